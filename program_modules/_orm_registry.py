"""
Module ORM Registry (``program_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM module is imported so that ``Base.metadata``
contains its table definitions before tables are created.

Architecture position
---------------------
**Modules layer** -- utility.  Called by ``program_kernel.db.engine``
``create_tables()``/``drop_tables()`` and by test fixtures.
"""


def import_all_orm_models() -> None:
    """Import every ORM module to register its models.

    This function is idempotent -- repeated calls are harmless.
    """
    import program_modules.programs.orm  # noqa: F401
    import program_ingestion.models  # noqa: F401  # progress import tables
