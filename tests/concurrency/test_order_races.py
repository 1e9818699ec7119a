"""
Order race tests.

Every transition is a compare-and-swap on the order version, so racing
writers produce exactly one winner.  Each thread uses its own session, as
concurrent request handlers would.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import Actor, ActorRole
from fulfillment_kernel.exceptions import (
    ConflictingTransition,
    DuplicateInvoice,
    InvalidTransition,
)
from fulfillment_kernel.models.activity import ActivityRecord
from fulfillment_kernel.models.outbox import DispatchOutboxEntry
from fulfillment_modules.billing.service import BillingLedger
from fulfillment_modules.orders.models import OrderStatus
from fulfillment_modules.orders.selector import OrderSelector
from fulfillment_modules.orders.service import OrderStateMachine
from fulfillment_services.collaborators import UploadFile
from fulfillment_services.dispatcher import ActivityDispatcher
from tests.conftest import InMemoryBlobStore

pytestmark = pytest.mark.slow_locks

THREADS = 4


@pytest.fixture
def thread_services(session_factory, settings, catalog, ledger_client, clock, blob_store):
    """Factory for a (session, billing, machine) triple owned by one thread."""
    opened = []

    def _build(store=None):
        s = session_factory()
        opened.append(s)
        billing = BillingLedger(
            s, settings, catalog=catalog, ledger_client=ledger_client, clock=clock,
        )
        machine = OrderStateMachine(
            s, settings, billing=billing, blob_store=store or blob_store, clock=clock,
        )
        return s, billing, machine

    yield _build
    for s in opened:
        s.close()


def _race(n, fn):
    barrier = Barrier(n)

    def _run(i):
        barrier.wait()
        try:
            return ("ok", fn(i))
        except Exception as exc:
            return ("error", exc)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_run, range(n)))


class TestTransitionRaces:
    def test_one_editor_wins_accept(self, session, thread_services, create_order):
        order_id = create_order()
        version = OrderSelector(session).get(order_id).version
        machines = [thread_services()[2] for _ in range(THREADS)]

        outcomes = _race(
            THREADS,
            lambda i: machines[i].accept(
                order_id, Actor(f"editor-{i}", ActorRole.EDITOR), expected_version=version,
            ),
        )

        winners = [r for kind, r in outcomes if kind == "ok"]
        losers = [r for kind, r in outcomes if kind == "error"]
        assert len(winners) == 1
        assert len(losers) == THREADS - 1
        assert all(type(e) is ConflictingTransition for e in losers)
        assert all(e.expected_version == version for e in losers)

        session.expire_all()
        order = OrderSelector(session).get(order_id)
        assert order.version == 2
        assert order.editor_id == winners[0].order.editor_id
        events = session.scalar(
            select(func.count(DispatchOutboxEntry.id))
            .where(DispatchOutboxEntry.order_id == order_id)
        )
        assert events == 2

    def test_approve_races_revision(self, session, thread_services, drive_to, customer):
        order_id = drive_to(OrderStatus.HUMAN_CHECK)
        version = OrderSelector(session).get(order_id).version
        (_, _, first), (_, _, second) = thread_services(), thread_services()

        outcomes = _race(2, lambda i: (
            first.approve(order_id, customer, expected_version=version) if i == 0
            else second.request_revision(order_id, customer, "Redo the sky", expected_version=version)
        ))

        assert sum(1 for kind, _ in outcomes if kind == "ok") == 1
        [loser] = [r for kind, r in outcomes if kind == "error"]
        assert type(loser) is ConflictingTransition
        assert loser.expected_version == version
        session.expire_all()
        assert OrderSelector(session).get(order_id).status in (
            OrderStatus.COMPLETED, OrderStatus.IN_REVISION,
        )

    def test_sequences_unique_under_contention(self, session, machine, thread_services, drive_to, editor):
        order_id = drive_to(OrderStatus.PROCESSING)
        machine.upload_deliverable(order_id, editor, (UploadFile("a.jpg", b"a"),), folder="raw")
        triples = [thread_services() for _ in range(THREADS)]

        # Folder visibility writes events without bumping the version
        _race(THREADS, lambda i: triples[i][2].set_folder_visibility(
            order_id, Actor("admin-1", ActorRole.PARTNER), "raw", bool(i % 2),
        ))

        session.expire_all()
        sequences = session.scalars(
            select(DispatchOutboxEntry.sequence).where(DispatchOutboxEntry.order_id == order_id)
        ).all()
        assert len(sequences) >= 4
        assert sorted(sequences) == list(range(1, len(sequences) + 1))


class TestInvoiceRaces:
    def test_single_external_invoice(self, session, thread_services, drive_to, billing, map_accounts, ledger_client):
        order_id = drive_to(OrderStatus.COMPLETED)
        billing.add_line_item(order_id, "photo-edit")
        map_accounts()
        ledgers = [thread_services()[1] for _ in range(THREADS)]

        outcomes = _race(THREADS, lambda i: ledgers[i].raise_invoice(order_id))

        assert sum(1 for kind, _ in outcomes if kind == "ok") == 1
        assert all(
            isinstance(r, (DuplicateInvoice, ConflictingTransition))
            for kind, r in outcomes if kind == "error"
        )
        assert len(ledger_client.requests) == 1
        session.expire_all()
        assert billing.get_ledger(order_id).invoice_id == "inv-1"


class TestDispatchRaces:
    def test_one_record_per_sequence(
        self, session, session_factory, settings, publisher, directory, clock, build_machine, drive_to,
    ):
        quiet = build_machine(settings, with_dispatcher=False)
        order_id = drive_to(OrderStatus.PENDING)
        quiet.accept(order_id, Actor("editor-1", ActorRole.EDITOR))
        quiet.mark_complete(order_id, Actor("editor-1", ActorRole.EDITOR))
        dispatchers = [
            ActivityDispatcher(
                session_factory, settings, publisher=publisher, directory=directory, clock=clock,
            )
            for _ in range(THREADS)
        ]

        outcomes = _race(THREADS, lambda i: dispatchers[i].dispatch_order(order_id))

        assert all(kind == "ok" for kind, _ in outcomes)
        session.expire_all()
        records = session.scalars(
            select(ActivityRecord.sequence).where(ActivityRecord.order_id == order_id)
        ).all()
        assert sorted(records) == [1, 2, 3]
        # order_created was delivered inline by drive_to; 2 and 3 exactly once each
        published = [r["sequence"] for _, r in publisher.published]
        assert sorted(published) == [1, 2, 3]


class TransitioningBlobStore(InMemoryBlobStore):
    """Blob store that lets another request move the order mid-upload."""

    def __init__(self, on_upload):
        super().__init__()
        self._on_upload = on_upload
        self._fired = False

    def upload(self, order_id, file, on_progress):
        if not self._fired:
            self._fired = True
            self._on_upload()
        return super().upload(order_id, file, on_progress)


class TestUploadRaces:
    def test_transition_during_upload_orphans_files(
        self, session, thread_services, drive_to, editor, captured_logs,
    ):
        order_id = drive_to(OrderStatus.PROCESSING)
        _, _, other = thread_services()
        store = TransitioningBlobStore(lambda: other.mark_complete(order_id, editor))
        _, _, uploading = thread_services(store)

        with pytest.raises(InvalidTransition):
            uploading.upload_deliverable(order_id, editor, (UploadFile("a.jpg", b"a"),))

        session.expire_all()
        assert OrderSelector(session).files(order_id) == []
        assert OrderSelector(session).get(order_id).status == OrderStatus.HUMAN_CHECK
        assert len(store.blobs) == 1
        assert any(r["message"] == "uploads_orphaned_by_transition" for r in captured_logs())
