"""
Deliverable uploads (``fulfillment_modules.orders.uploads``).

Responsibility
--------------
Moves a batch of files into the blob store.  Every file is an independent
item with its own state and progress:

    pending -> uploading -> completed
                        \\-> error

Items may run on a thread pool and finish in any order.  A batch is
*ready* only when every item is terminal (completed or error).  A failed
item never fails its siblings; ``retry_failed`` re-uploads only the items
in ``error``.

Persistence of completed items (OrderFile rows, activity events) is the
state machine's job; this module does no database I/O.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4

from fulfillment_kernel.logging_config import get_logger
from fulfillment_services.collaborators import BlobStore, StoredBlob, UploadFile

logger = get_logger("modules.orders.uploads")


class UploadItemState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


_TERMINAL = frozenset({UploadItemState.COMPLETED, UploadItemState.ERROR})


@dataclass
class UploadItem:
    """
    Mutable progress record for one file.

    Updated from worker threads; all writes go through the item lock.
    """
    file: UploadFile
    item_id: str = field(default_factory=lambda: uuid4().hex)
    state: UploadItemState = UploadItemState.PENDING
    progress: int = 0
    blob: StoredBlob | None = None
    error: str | None = None
    attempts: int = 0
    persisted: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    def report_progress(self, percent: int) -> None:
        # Progress only moves forward and stays within 0-100
        percent = max(0, min(100, int(percent)))
        with self._lock:
            if self.state == UploadItemState.UPLOADING and percent > self.progress:
                self.progress = percent

    def _start(self) -> None:
        with self._lock:
            self.state = UploadItemState.UPLOADING
            self.progress = 0
            self.error = None
            self.attempts += 1

    def _complete(self, blob: StoredBlob) -> None:
        with self._lock:
            self.blob = blob
            self.progress = 100
            self.state = UploadItemState.COMPLETED

    def _fail(self, error: str) -> None:
        with self._lock:
            self.error = error
            self.state = UploadItemState.ERROR


@dataclass
class UploadBatch:
    """The files of one ``upload_deliverable`` request."""
    order_id: UUID
    items: list[UploadItem]
    folder: str | None = None

    @property
    def is_ready(self) -> bool:
        return all(item.is_terminal for item in self.items)

    @property
    def completed(self) -> list[UploadItem]:
        return [i for i in self.items if i.state == UploadItemState.COMPLETED]

    @property
    def failed(self) -> list[UploadItem]:
        return [i for i in self.items if i.state == UploadItemState.ERROR]

    @property
    def unpersisted(self) -> list[UploadItem]:
        return [i for i in self.completed if not i.persisted]

    @property
    def progress(self) -> int:
        """Mean progress across items (0-100)."""
        if not self.items:
            return 100
        return sum(i.progress for i in self.items) // len(self.items)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)


class DeliverableUploader:
    """
    Runs blob uploads for a batch.

    Without an executor the items run on a private thread pool of
    ``max_workers`` threads.  Each call blocks until the batch is ready.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        executor: Executor | None = None,
        max_workers: int = 4,
    ):
        self._blob_store = blob_store
        self._executor = executor
        self._max_workers = max_workers

    def new_batch(
        self,
        order_id: UUID,
        files: tuple[UploadFile, ...],
        folder: str | None = None,
    ) -> UploadBatch:
        return UploadBatch(
            order_id=order_id,
            items=[UploadItem(file=f) for f in files],
            folder=folder,
        )

    def upload(self, batch: UploadBatch) -> UploadBatch:
        """Upload every pending item of the batch."""
        pending = [i for i in batch.items if i.state == UploadItemState.PENDING]
        self._run(batch, pending)
        return batch

    def retry_failed(self, batch: UploadBatch) -> UploadBatch:
        """Re-upload only the items currently in ``error``."""
        failed = batch.failed
        logger.info(
            "upload_retry_started",
            extra={"order_id": str(batch.order_id), "item_count": len(failed)},
        )
        self._run(batch, failed)
        return batch

    def _run(self, batch: UploadBatch, items: list[UploadItem]) -> None:
        if not items:
            return
        if self._executor is not None:
            futures = [self._executor.submit(self._upload_item, batch, i) for i in items]
            wait(futures)
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(items)),
                thread_name_prefix="deliverable-upload",
            ) as pool:
                futures = [pool.submit(self._upload_item, batch, i) for i in items]
                wait(futures)

        logger.info(
            "upload_batch_settled",
            extra={
                "order_id": str(batch.order_id),
                "completed": len(batch.completed),
                "failed": len(batch.failed),
                "ready": batch.is_ready,
            },
        )

    def _upload_item(self, batch: UploadBatch, item: UploadItem) -> None:
        item._start()
        upload_file = item.file
        if batch.folder and not upload_file.folder:
            upload_file = UploadFile(
                file_name=upload_file.file_name,
                content=upload_file.content,
                mime_type=upload_file.mime_type,
                folder=batch.folder,
                original_name=upload_file.original_name,
            )
        try:
            blob = self._blob_store.upload(
                str(batch.order_id), upload_file, item.report_progress
            )
        except Exception as exc:
            # The failure is recorded on the item; siblings keep going
            item._fail(f"{type(exc).__name__}: {exc}")
            logger.warning(
                "upload_item_failed",
                extra={
                    "order_id": str(batch.order_id),
                    "item_id": item.item_id,
                    "file_name": item.file.file_name,
                    "attempt": item.attempts,
                },
                exc_info=True,
            )
            return
        item._complete(blob)
        logger.debug(
            "upload_item_completed",
            extra={
                "order_id": str(batch.order_id),
                "item_id": item.item_id,
                "file_name": item.file.file_name,
            },
        )
