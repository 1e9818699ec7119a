"""
Module ORM Registry (``fulfillment_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
holds all table definitions before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``fulfillment_kernel.db.engine.create_tables``.  MUST NOT be imported at
module load by ``fulfillment_kernel`` or ``fulfillment_services``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``fulfillment_modules.*.orm`` module.

    Kernel tables first; billing ledgers reference ``orders.id``.
    Idempotent -- repeated calls are harmless.
    """
    import fulfillment_kernel.models  # noqa: F401
    import fulfillment_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import fulfillment_modules.orders.orm  # noqa: F401
    import fulfillment_modules.billing.orm  # noqa: F401
    import fulfillment_modules.accounting.orm  # noqa: F401
    # fmt: on
