"""
Order State Machine (``fulfillment_modules.orders.service``).

Responsibility
--------------
Validates and applies every order lifecycle transition.  Each request is
checked against ``ORDER_WORKFLOW`` and its guard, applied with a
compare-and-swap write, recorded as an outbox event in the same
transaction and committed.  Post-commit side effects (automatic invoice
raise, activity dispatch) run afterwards and never undo the transition.

Architecture position
---------------------
**Modules layer**.  ``OrderStateMachine`` is the sole writer of ``orders``
rows.  It composes ``RevisionPolicyResolver`` (guard), ``BillingLedger``
(ledger creation, invoice raise), ``DeliverableUploader`` (blob uploads),
the kernel ``OutboxWriter`` and the ``ActivityDispatcher``.

Invariants enforced
-------------------
* Every transition is ``UPDATE orders ... WHERE id = ? AND version = ?
  AND status = ?``; zero rows means another caller won
  (``ConflictingTransition``).
* A ``(status, action)`` pair outside ``ORDER_WORKFLOW`` raises
  ``InvalidTransition`` and leaves the order untouched.  Terminal states
  accept nothing, uploads included.
* The order row, its outbox events and its ledger row are written in one
  transaction; an event exists iff the change that produced it committed.
* Dispatch and invoice failures after commit are reported on the result,
  never raised into the caller.

Failure modes
-------------
* ``OrderNotFound``, ``InvalidTransition``, ``RevisionLimitExceeded``,
  ``ConflictingTransition``; session rolled back, exception re-raised.

Usage::

    machine = OrderStateMachine(
        session, settings,
        billing=billing, dispatcher=dispatcher, blob_store=blob_store,
        clock=clock,
    )
    created = machine.create_order(
        job_id="job-1", customer_id="cust-1", actor=partner,
        services=[ServiceSelection("photo-edit")],
    )
    machine.submit(Accept(order_id=created.order.id, actor=editor))
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from fulfillment_config.schema import InvoiceTrigger, PartnerSettings
from fulfillment_engines.notification_audience import OrderEventType
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import Actor
from fulfillment_kernel.domain.workflow import Transition
from fulfillment_kernel.exceptions import (
    AccountingError,
    BillingError,
    ConflictingTransition,
    DuplicateInvoice,
    InvalidTransition,
    OrderNotFound,
    RevisionLimitExceeded,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.activity import ActivityAction, ActivityCategory
from fulfillment_kernel.services.outbox_writer import OrderEvent, OutboxWriter
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_modules.billing.service import BillingLedger
from fulfillment_modules.orders.models import (
    Accept,
    Approve,
    Decline,
    MarkComplete,
    Order,
    OrderAction,
    OrderStatus,
    RequestRevision,
    ResumeWork,
    RevisionStatus,
    ServiceSelection,
    TransitionRequest,
    TransitionResult,
    UploadDeliverable,
)
from fulfillment_modules.orders.orm import OrderFileModel, OrderModel, OrderServiceModel
from fulfillment_modules.orders.revisions import RevisionPolicyResolver
from fulfillment_modules.orders.uploads import DeliverableUploader, UploadBatch
from fulfillment_modules.orders.workflows import ORDER_WORKFLOW
from fulfillment_services.collaborators import BlobStore, UploadFile
from fulfillment_services.dispatcher import ActivityDispatcher

logger = get_logger("modules.orders.service")

_UPLOADABLE = frozenset({OrderStatus.PROCESSING.value, OrderStatus.IN_REVISION.value})


class OrderStateMachine:
    """
    The single entry point for order lifecycle changes.

    Contract
    --------
    * ``submit`` accepts the closed set of request types in
      ``orders.models`` and returns a ``TransitionResult``.
    * The named methods (``accept``, ``decline``, ...) build the request
      and call ``submit``.

    Guarantees
    ----------
    * Transaction boundary: each public write commits on success and rolls
      back on failure or exception.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT authenticate actors; ``Actor`` is trusted.
    * Does NOT deliver notifications; the dispatcher does, after commit.
    """

    def __init__(
        self,
        session: Session,
        settings: PartnerSettings,
        *,
        billing: BillingLedger,
        dispatcher: ActivityDispatcher | None = None,
        blob_store: BlobStore | None = None,
        clock: Clock | None = None,
        revisions: RevisionPolicyResolver | None = None,
        uploader: DeliverableUploader | None = None,
    ):
        self._session = session
        self._settings = settings
        self._billing = billing
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._revisions = revisions or RevisionPolicyResolver(session, settings)
        self._outbox = OutboxWriter(session, self._clock)
        self._sequences = SequenceService(session)
        if uploader is None and blob_store is not None:
            uploader = DeliverableUploader(blob_store, max_workers=settings.upload_max_workers)
        self._uploader = uploader

    # =========================================================================
    # Creation
    # =========================================================================

    def create_order(
        self,
        *,
        job_id: str,
        customer_id: str,
        actor: Actor,
        services: Sequence[ServiceSelection] = (),
        due_date: date | None = None,
        editor_id: str | None = None,
    ) -> TransitionResult:
        """
        Place a new order in ``pending``.

        Postconditions:
            - Order row (version 1), its service rows and an empty billing
              ledger are committed together with the ``order_created``
              event (sequence 1).
        """
        with LogContext.bind(actor_id=actor.id, partner_id=self._settings.partner_id):
            try:
                number = self._sequences.next_value(SequenceService.ORDER_NUMBER)
                order_number = f"{number:05d}"
                row = OrderModel(
                    order_number=order_number,
                    job_id=job_id,
                    customer_id=customer_id,
                    partner_id=self._settings.partner_id,
                    editor_id=editor_id,
                    status=OrderStatus.PENDING.value,
                    revision_count=0,
                    due_date=due_date,
                    version=1,
                )
                row.services = [
                    OrderServiceModel(
                        position=i,
                        service_id=s.service_id,
                        quantity=s.quantity,
                        instructions=s.instructions,
                    )
                    for i, s in enumerate(services)
                ]
                self._session.add(row)
                self._session.flush()

                self._billing.open_ledger(row.id, customer_id, order_number)
                sequence = self._outbox.append(
                    row.id,
                    actor,
                    OrderEvent(
                        event_type=OrderEventType.ORDER_CREATED.value,
                        partner_id=row.partner_id,
                        title=f"Order {order_number} created",
                        action=ActivityAction.CREATION,
                        category=ActivityCategory.ORDER,
                        description=f"Order {order_number} placed for job {job_id}",
                        editor_id=editor_id,
                        customer_id=customer_id,
                        details={
                            "order_number": order_number,
                            "job_id": job_id,
                            "services": [s.service_id for s in services],
                        },
                    ),
                )
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            order = row.to_dto()
            logger.info(
                "order_created",
                extra={
                    "order_id": str(order.id),
                    "order_number": order_number,
                    "customer_id": customer_id,
                    "service_count": len(order.services),
                },
            )
            result = TransitionResult(
                order=order,
                action="create",
                from_status=OrderStatus.PENDING,
                to_status=OrderStatus.PENDING,
                sequences=(sequence,),
            )
            return self._dispatch(result)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(self, request: TransitionRequest) -> TransitionResult:
        """
        Validate and apply one transition request.

        Raises:
            OrderNotFound, InvalidTransition, RevisionLimitExceeded,
            ConflictingTransition.
        """
        with LogContext.bind(
            order_id=str(request.order_id),
            actor_id=request.actor.id,
            partner_id=self._settings.partner_id,
        ):
            logger.info(
                "order_transition_started",
                extra={
                    "action": request.action.value,
                    "actor_role": request.actor.role.value,
                    "expected_version": request.expected_version,
                },
            )
            match request:
                case Accept():
                    result = self._accept(request)
                case Decline():
                    result = self._decline(request)
                case UploadDeliverable():
                    result = self._upload_deliverable(request)
                case MarkComplete():
                    result = self._simple(
                        request,
                        OrderEventType.ORDER_MARKED_COMPLETE,
                        "Order {number} sent for review",
                    )
                case ResumeWork():
                    result = self._simple(
                        request,
                        OrderEventType.WORK_RESUMED,
                        "Work resumed on order {number}",
                    )
                case RequestRevision():
                    result = self._request_revision(request)
                case Approve():
                    result = self._approve(request)
                case _:
                    raise TypeError(f"Unsupported transition request: {type(request).__name__}")

            return self._dispatch(result)

    def accept(self, order_id: UUID, actor: Actor, editor_id: str | None = None,
               expected_version: int | None = None) -> TransitionResult:
        return self.submit(Accept(order_id, actor, editor_id, expected_version))

    def decline(self, order_id: UUID, actor: Actor, reason: str | None = None,
                expected_version: int | None = None) -> TransitionResult:
        return self.submit(Decline(order_id, actor, reason, expected_version))

    def upload_deliverable(self, order_id: UUID, actor: Actor, files: Sequence[UploadFile],
                           folder: str | None = None,
                           expected_version: int | None = None) -> TransitionResult:
        return self.submit(UploadDeliverable(order_id, actor, tuple(files), folder, expected_version))

    def mark_complete(self, order_id: UUID, actor: Actor,
                      expected_version: int | None = None) -> TransitionResult:
        return self.submit(MarkComplete(order_id, actor, expected_version))

    def resume_work(self, order_id: UUID, actor: Actor,
                    expected_version: int | None = None) -> TransitionResult:
        return self.submit(ResumeWork(order_id, actor, expected_version))

    def request_revision(self, order_id: UUID, actor: Actor, notes: str,
                         expected_version: int | None = None) -> TransitionResult:
        return self.submit(RequestRevision(order_id, actor, notes, expected_version))

    def approve(self, order_id: UUID, actor: Actor,
                expected_version: int | None = None) -> TransitionResult:
        return self.submit(Approve(order_id, actor, expected_version))

    def _accept(self, request: Accept) -> TransitionResult:
        try:
            row, transition = self._begin(request)
            assignee = request.assignee
            if row.editor_id is not None and (
                row.editor_id != request.actor.id or assignee != row.editor_id
            ):
                raise InvalidTransition(
                    str(row.id), row.status, request.action.value,
                    reason=f"editor_assignable: order is assigned to {row.editor_id}",
                )
            now = self._clock.now()
            self._compare_and_swap(
                row, transition, editor_id=assignee, date_accepted=now,
            )
            sequence = self._append(
                row, request.actor, OrderEventType.ORDER_ACCEPTED,
                title=f"Order {row.order_number} accepted",
                action=ActivityAction.ASSIGNMENT,
                category=ActivityCategory.ASSIGNMENT,
                description=f"Accepted by {assignee}",
                editor_id=assignee,
                details={"editor_id": assignee},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return self._committed(request, transition, (sequence,))

    def _decline(self, request: Decline) -> TransitionResult:
        try:
            row, transition = self._begin(request)
            previous_editor = row.editor_id
            self._compare_and_swap(
                row, transition, decline_reason=request.reason, editor_id=None,
            )
            sequence = self._append(
                row, request.actor, OrderEventType.ORDER_DECLINED,
                title=f"Order {row.order_number} declined",
                description=request.reason or "",
                editor_id=None,
                details={"reason": request.reason, "previous_editor_id": previous_editor},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return self._committed(request, transition, (sequence,))

    def _simple(
        self, request: TransitionRequest, event_type: OrderEventType, title: str,
    ) -> TransitionResult:
        try:
            row, transition = self._begin(request)
            self._compare_and_swap(row, transition)
            sequence = self._append(
                row, request.actor, event_type,
                title=title.format(number=row.order_number),
                details={"from_status": transition.from_state, "to_status": transition.to_state},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return self._committed(request, transition, (sequence,))

    def _request_revision(self, request: RequestRevision) -> TransitionResult:
        try:
            row, transition = self._begin(request)
            allowance = self._revisions.resolve(row.customer_id, row.revision_count)
            if not allowance.allowed:
                logger.info(
                    "revision_limit_reached",
                    extra={
                        "customer_id": row.customer_id,
                        "revision_count": row.revision_count,
                        "limit": allowance.limit,
                        "source": allowance.source.value,
                    },
                )
                raise RevisionLimitExceeded(
                    str(row.id), row.customer_id, row.revision_count, allowance.limit,
                )
            revision_count = row.revision_count + 1
            self._compare_and_swap(
                row, transition,
                revision_count=revision_count,
                revision_notes=request.notes,
            )
            sequence = self._append(
                row, request.actor, OrderEventType.REVISION_REQUESTED,
                title=f"Revision requested on order {row.order_number}",
                description=request.notes,
                details={
                    "notes": request.notes,
                    "revision_count": revision_count,
                    "limit": "unlimited" if allowance.limit is None else allowance.limit,
                },
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return self._committed(request, transition, (sequence,))

    def _approve(self, request: Approve) -> TransitionResult:
        try:
            row, transition = self._begin(request)
            self._compare_and_swap(row, transition, completed_at=self._clock.now())
            sequence = self._append(
                row, request.actor, OrderEventType.ORDER_APPROVED,
                title=f"Order {row.order_number} approved",
                details={"revision_count": row.revision_count},
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        result = self._committed(request, transition, (sequence,))
        if transition.triggers_invoice and self._settings.invoice_trigger == InvoiceTrigger.ON_DELIVERED:
            result = self._raise_invoice_after_approval(result, request.actor)
        return result

    def _raise_invoice_after_approval(self, result: TransitionResult, actor: Actor) -> TransitionResult:
        order_id = result.order.id
        try:
            invoice = self._billing.raise_invoice(order_id, actor)
        except DuplicateInvoice:
            logger.info("auto_invoice_already_raised", extra={"order_id": str(order_id)})
            return result
        except (BillingError, AccountingError, ConflictingTransition) as exc:
            logger.warning(
                "auto_invoice_raise_failed",
                extra={"order_id": str(order_id), "error_code": exc.code, "error": str(exc)},
            )
            self._billing.mark_auto_raise_pending(order_id, exc)
            return replace(result, invoice_error=exc)
        return replace(
            result,
            invoice=invoice,
            sequences=result.sequences + (invoice.sequence,),
        )

    # =========================================================================
    # Deliverables
    # =========================================================================

    def _upload_deliverable(self, request: UploadDeliverable) -> TransitionResult:
        uploader = self._require_uploader()
        try:
            row, transition = self._begin(request)
            # No writes yet; release the read transaction while files upload
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        batch = uploader.upload(uploader.new_batch(row.id, request.files, request.folder))
        return self._persist_uploads(request.actor, batch, request.action.value)

    def retry_failed_uploads(self, batch: UploadBatch, actor: Actor) -> TransitionResult:
        """Re-upload the failed items of ``batch`` and record the ones that now succeed."""
        uploader = self._require_uploader()
        with LogContext.bind(order_id=str(batch.order_id), actor_id=actor.id):
            uploader.retry_failed(batch)
            result = self._persist_uploads(actor, batch, OrderAction.UPLOAD_DELIVERABLE.value)
            return self._dispatch(result)

    def _persist_uploads(self, actor: Actor, batch: UploadBatch, action: str) -> TransitionResult:
        """
        Store OrderFile rows and one event per newly completed item.

        Failed items change nothing; the order keeps its status.
        """
        items = batch.unpersisted
        sequences: list[int] = []
        try:
            row = self._order_row(batch.order_id)
            from_status = OrderStatus(row.status)
            if not items:
                self._session.commit()
            else:
                if row.status not in _UPLOADABLE:
                    logger.warning(
                        "uploads_orphaned_by_transition",
                        extra={"status": row.status, "item_count": len(items)},
                    )
                    raise InvalidTransition(
                        str(row.id), row.status, action,
                        reason="order left an uploadable state while files were uploading",
                    )
                self._compare_and_swap(
                    row, Transition(row.status, row.status, action=action),
                )
                uploaded_at = self._clock.now()
                expires_at = uploaded_at + timedelta(days=self._settings.deliverable_expiry_days)
                for item in items:
                    file_row = OrderFileModel(
                        order_id=row.id,
                        file_name=item.file.file_name,
                        original_name=item.file.original_name or item.file.file_name,
                        file_size=item.file.size,
                        mime_type=item.file.mime_type,
                        url=item.blob.url,
                        path=item.blob.path,
                        folder=item.file.folder or batch.folder,
                        is_visible=True,
                        uploaded_by=actor.id,
                        uploaded_at=uploaded_at,
                        expires_at=expires_at,
                    )
                    self._session.add(file_row)
                    self._session.flush()
                    sequences.append(
                        self._append(
                            row, actor, OrderEventType.DELIVERABLE_UPLOADED,
                            title=f"Deliverable uploaded: {item.file.file_name}",
                            action=ActivityAction.UPLOAD,
                            category=ActivityCategory.FILE,
                            details={
                                "file_id": file_row.id,
                                "file_name": item.file.file_name,
                                "file_size": item.file.size,
                                "folder": file_row.folder,
                                "attempts": item.attempts,
                            },
                        )
                    )
                self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        for item in items:
            item.persisted = True

        logger.info(
            "deliverables_recorded",
            extra={
                "order_id": str(batch.order_id),
                "recorded": len(items),
                "failed": len(batch.failed),
                "ready": batch.is_ready,
            },
        )
        order = self._order_row(batch.order_id).to_dto()
        return TransitionResult(
            order=order,
            action=action,
            from_status=from_status,
            to_status=order.status,
            sequences=tuple(sequences),
            upload_batch=batch,
            details={"failed_items": [i.item_id for i in batch.failed]},
        )

    def set_folder_visibility(
        self, order_id: UUID, actor: Actor, folder: str, visible: bool,
    ) -> TransitionResult:
        """
        Show or hide a deliverable folder.

        Recorded as a visibility-only activity: hidden from the default
        timeline and never notified.  Does not change the order version.
        """
        with LogContext.bind(order_id=str(order_id), actor_id=actor.id):
            sequences: tuple[int, ...] = ()
            try:
                row = self._order_row(order_id)
                changed = self._session.execute(
                    update(OrderFileModel)
                    .where(
                        OrderFileModel.order_id == order_id,
                        OrderFileModel.folder == folder,
                        OrderFileModel.is_visible != visible,
                    )
                    .values(is_visible=visible)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if changed:
                    sequences = (
                        self._append(
                            row, actor, OrderEventType.FOLDER_VISIBILITY_CHANGED,
                            title=f"Folder {folder} {'shown' if visible else 'hidden'}",
                            action=ActivityAction.FILE_MANAGEMENT,
                            category=ActivityCategory.FILE,
                            details={"folder": folder, "visible": visible, "file_count": changed},
                            visibility_only=True,
                        ),
                    )
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            self._session.expire_all()
            logger.info(
                "folder_visibility_changed",
                extra={"folder": folder, "visible": visible, "file_count": changed},
            )
            order = self._order_row(order_id).to_dto()
            result = TransitionResult(
                order=order,
                action="set_folder_visibility",
                from_status=order.status,
                to_status=order.status,
                sequences=sequences,
                details={"file_count": changed},
            )
            return self._dispatch(result)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_order(self, order_id: UUID) -> Order:
        return self._order_row(order_id).to_dto()

    def revision_status(self, order_id: UUID) -> RevisionStatus:
        """Revision rounds used and left; ``limit``/``remaining`` None when unlimited."""
        row = self._order_row(order_id)
        allowance = self._revisions.resolve(row.customer_id, row.revision_count)
        return RevisionStatus(
            order_id=row.id,
            limit=allowance.limit,
            used=allowance.used,
            remaining=allowance.remaining,
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _order_row(self, order_id: UUID) -> OrderModel:
        row = self._session.scalars(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).one_or_none()
        if row is None:
            raise OrderNotFound(str(order_id))
        return row

    def _begin(self, request: TransitionRequest) -> tuple[OrderModel, Transition]:
        row = self._order_row(request.order_id)
        if request.expected_version is not None and request.expected_version != row.version:
            raise ConflictingTransition(
                "order", str(row.id), request.expected_version, row.version,
            )
        transition = ORDER_WORKFLOW.transition_for(row.status, request.action.value)
        if transition is None:
            logger.info(
                "order_transition_rejected",
                extra={"status": row.status, "action": request.action.value},
            )
            raise InvalidTransition(str(row.id), row.status, request.action.value)
        return row, transition

    def _compare_and_swap(self, row: OrderModel, transition: Transition, **values: Any) -> None:
        expected = row.version
        result = self._session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == row.id,
                OrderModel.version == expected,
                OrderModel.status == transition.from_state,
            )
            .values(
                status=transition.to_state,
                version=expected + 1,
                updated_at=func.now(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self._session.scalar(
                select(OrderModel.version).where(OrderModel.id == row.id)
            )
            logger.warning(
                "order_transition_conflict",
                extra={
                    "action": transition.action,
                    "expected_version": expected,
                    "actual_version": actual,
                },
            )
            raise ConflictingTransition("order", str(row.id), expected, actual)
        # Reload on next access so events see the new state
        self._session.expire(row)

    def _append(
        self,
        row: OrderModel,
        actor: Actor,
        event_type: OrderEventType,
        *,
        title: str,
        action: ActivityAction = ActivityAction.STATUS_CHANGE,
        category: ActivityCategory = ActivityCategory.ORDER,
        description: str = "",
        details: dict[str, Any] | None = None,
        visibility_only: bool = False,
        **overrides: Any,
    ) -> int:
        event = OrderEvent(
            event_type=event_type.value,
            partner_id=row.partner_id,
            title=title,
            action=action,
            category=category,
            description=description,
            editor_id=overrides.get("editor_id", row.editor_id),
            customer_id=row.customer_id,
            details={"order_number": row.order_number, **(details or {})},
            visibility_only=visibility_only,
        )
        return self._outbox.append(row.id, actor, event)

    def _committed(
        self, request: TransitionRequest, transition: Transition, sequences: tuple[int, ...],
    ) -> TransitionResult:
        order = self._order_row(request.order_id).to_dto()
        logger.info(
            "order_transition_committed",
            extra={
                "action": transition.action,
                "from_status": transition.from_state,
                "to_status": transition.to_state,
                "version": order.version,
                "sequences": list(sequences),
            },
        )
        return TransitionResult(
            order=order,
            action=transition.action,
            from_status=OrderStatus(transition.from_state),
            to_status=OrderStatus(transition.to_state),
            sequences=sequences,
        )

    def _dispatch(self, result: TransitionResult) -> TransitionResult:
        if self._dispatcher is None or not result.sequences:
            return result
        return replace(result, dispatch=self._dispatcher.after_commit(result.order.id))

    def _require_uploader(self) -> DeliverableUploader:
        if self._uploader is None:
            raise RuntimeError("No blob store configured for deliverable uploads")
        return self._uploader
