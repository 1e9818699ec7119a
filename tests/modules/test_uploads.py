"""
Tests for DeliverableUploader.

Items upload independently; one failure never fails its siblings and a
retry touches only the failed items.
"""

from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fulfillment_modules.orders.uploads import (
    DeliverableUploader,
    UploadItem,
    UploadItemState,
)
from fulfillment_services.collaborators import UploadFile
from tests.conftest import InMemoryBlobStore


def _files(*names):
    return tuple(UploadFile(name, name.encode(), "image/jpeg") for name in names)


@pytest.fixture
def uploader(blob_store):
    return DeliverableUploader(blob_store, max_workers=2)


class TestUploadBatch:
    def test_all_complete(self, uploader, blob_store):
        order_id = uuid4()
        batch = uploader.upload(uploader.new_batch(order_id, _files("a.jpg", "b.jpg", "c.jpg")))

        assert batch.is_ready
        assert not batch.has_failures
        assert batch.progress == 100
        assert {i.blob.path for i in batch.completed} == {
            f"orders/{order_id}/a.jpg",
            f"orders/{order_id}/b.jpg",
            f"orders/{order_id}/c.jpg",
        }

    def test_failure_isolated(self, uploader, blob_store):
        blob_store.fail_names.add("b.jpg")
        batch = uploader.upload(uploader.new_batch(uuid4(), _files("a.jpg", "b.jpg", "c.jpg")))

        assert batch.is_ready
        assert [i.file.file_name for i in batch.failed] == ["b.jpg"]
        assert sorted(i.file.file_name for i in batch.completed) == ["a.jpg", "c.jpg"]
        [failed] = batch.failed
        assert failed.error.startswith("ConnectionError")
        assert failed.progress == 10

    def test_retry_only_failed(self, uploader, blob_store):
        blob_store.fail_names.add("b.jpg")
        batch = uploader.upload(uploader.new_batch(uuid4(), _files("a.jpg", "b.jpg")))
        blob_store.fail_names.clear()

        uploader.retry_failed(batch)

        assert not batch.has_failures
        assert sorted(blob_store.upload_calls) == ["a.jpg", "b.jpg", "b.jpg"]
        retried = next(i for i in batch.items if i.file.file_name == "b.jpg")
        assert retried.attempts == 2
        assert retried.error is None

    def test_retry_with_nothing_failed_is_noop(self, uploader, blob_store):
        batch = uploader.upload(uploader.new_batch(uuid4(), _files("a.jpg")))
        uploader.retry_failed(batch)
        assert blob_store.upload_calls == ["a.jpg"]

    def test_batch_folder_applied(self, uploader, blob_store):
        order_id = uuid4()
        batch = uploader.upload(uploader.new_batch(order_id, _files("a.jpg"), folder="finals"))
        assert batch.completed[0].blob.path == f"orders/{order_id}/finals/a.jpg"

    def test_empty_batch_is_ready(self, uploader):
        batch = uploader.upload(uploader.new_batch(uuid4(), ()))
        assert batch.is_ready
        assert batch.progress == 100

    def test_shared_executor(self):
        store = InMemoryBlobStore()
        with ThreadPoolExecutor(max_workers=3) as pool:
            uploader = DeliverableUploader(store, executor=pool)
            batch = uploader.upload(uploader.new_batch(uuid4(), _files("a.jpg", "b.jpg")))
        assert len(batch.completed) == 2

    def test_pending_items_before_upload(self, uploader):
        batch = uploader.new_batch(uuid4(), _files("a.jpg"))
        assert not batch.is_ready
        assert batch.items[0].state == UploadItemState.PENDING


class TestItemProgress:
    def test_ignored_unless_uploading(self):
        item = UploadItem(file=_files("a.jpg")[0])
        item.report_progress(50)
        assert item.progress == 0

    @given(st.lists(st.integers(min_value=-50, max_value=250), max_size=30))
    def test_monotonic_and_clamped(self, reports):
        item = UploadItem(file=_files("a.jpg")[0])
        item._start()
        seen = [item.progress]
        for percent in reports:
            item.report_progress(percent)
            seen.append(item.progress)
        assert seen == sorted(seen)
        assert all(0 <= p <= 100 for p in seen)
