"""
ORM-Level Immutability Enforcement for the activity trail.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept them:

    session.flush()
         |
         v
    [before_update event] --> _check_activity_record_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_activity_record_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Bulk ``update(ActivityRecord)`` / ``delete(ActivityRecord)`` statements do
not go through the unit of work, so a Session-level ``do_orm_execute``
listener rejects those too.

If a check fails, ImmutabilityViolationError is raised and the flush is
aborted.  The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable         | Notes
----------------|------------------------|----------------------------------
ActivityRecord  | ALWAYS (from creation) | The order history

Notifications are deliberately NOT protected: marking read and deleting
are normal operations on the notification stream.

Usage:
    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

    # Tests that must seed corrupted history:
    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import Session

from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_activity_record_update(mapper, connection, target):
    """Prevent any updates to ActivityRecord rows."""
    from fulfillment_kernel.models.activity import ActivityRecord

    if not isinstance(target, ActivityRecord):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ActivityRecord",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ActivityRecord",
        entity_id=str(target.id),
        reason="Activity records are immutable and cannot be modified",
    )


def _check_activity_record_delete(mapper, connection, target):
    """Prevent deletion of ActivityRecord rows."""
    from fulfillment_kernel.models.activity import ActivityRecord

    if not isinstance(target, ActivityRecord):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ActivityRecord",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ActivityRecord",
        entity_id=str(target.id),
        reason="Activity records cannot be deleted",
    )


def _check_bulk_activity_statement(orm_execute_state):
    """Reject ORM-enabled bulk UPDATE/DELETE against activity_records."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    from fulfillment_kernel.models.activity import ActivityRecord

    table = getattr(orm_execute_state.statement, "table", None)
    if table is None or table.name != ActivityRecord.__tablename__:
        return

    operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ActivityRecord",
            "entity_id": "*",
            "operation": f"BULK_{operation}",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ActivityRecord",
        entity_id="*",
        reason=f"Bulk {operation.lower()} of activity records is not allowed",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after the models are importable and before any
    database operations begin.
    """
    from fulfillment_kernel.models.activity import ActivityRecord

    for target, name, fn in _listeners(ActivityRecord):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from fulfillment_kernel.models.activity import ActivityRecord

    for target, name, fn in _listeners(ActivityRecord):
        _safe_remove_listener(target, name, fn)


def _listeners(activity_model):
    return (
        (activity_model, "before_update", _check_activity_record_update),
        (activity_model, "before_delete", _check_activity_record_delete),
        (Session, "do_orm_execute", _check_bulk_activity_statement),
    )
