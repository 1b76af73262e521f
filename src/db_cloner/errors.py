"""Error taxonomy for cloning and backup passes.

Every error raised by the resolver, the orchestrator and the backup module
derives from ``CloneError``.  Validation errors are raised before any side
effect; errors raised mid-pass name the table and the phase they occurred in
so an operator can resume by hand.

Usage:
    from db_cloner.errors import CloneError, BackendFailureError

    try:
        await cloner.clone(config)
    except BackendFailureError as e:
        print(f"{e.phase} failed on {e.table}: {e.__cause__}")
"""

from typing import Any


class CloneError(Exception):
    """Base class for all db-cloner errors."""


class InvalidConfigurationError(CloneError):
    """Raised for schema-pair rule violations and malformed identifiers."""


class CycleDetectedError(CloneError):
    """Raised by a strict topological sort that hits a back-edge.

    Attributes:
        cycle: The items on the dependency path, ending with the item that
            closes the cycle.
    """

    def __init__(self, cycle: list[Any]) -> None:
        self.cycle = cycle
        path = " -> ".join(str(item) for item in cycle)
        super().__init__(f"Cyclic dependency found: {path}")


class SchemaMissingError(CloneError):
    """Raised when a target schema is absent and may not be created."""

    def __init__(self, schema: str) -> None:
        self.schema = schema
        super().__init__(
            f"Schema '{schema}' doesn't exist at the target, "
            f"enable create_missing_schemas to create it"
        )


class ReferentialConflictError(CloneError):
    """Raised when dropping a table that other tables still reference."""

    def __init__(self, table: Any, referencing: list[Any]) -> None:
        self.table = table
        self.referencing = referencing
        names = ", ".join(str(t) for t in referencing)
        super().__init__(
            f"Table {table} is referenced by one or more foreign keys ({names})"
        )


class BackendFailureError(CloneError):
    """A backend failure during a clone phase.

    The original exception is kept as ``__cause__`` and its message is
    repeated verbatim.

    Attributes:
        table: Table being processed (``None`` for schema-level steps).
        phase: ``"schema"``, ``"drop"`` or ``"copy"``.
    """

    def __init__(self, table: Any, phase: str, error: BaseException) -> None:
        self.table = table
        self.phase = phase
        target = f" {table}" if table is not None else ""
        super().__init__(f"{phase} failed for{target}: {error}")


class CloneCancelledError(CloneError):
    """Raised when a cancellation or deadline stops a pass between steps."""

    def __init__(self, table: Any, phase: str) -> None:
        self.table = table
        self.phase = phase
        super().__init__(f"Cancelled before {phase} of {table}")
