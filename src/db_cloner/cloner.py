"""Clone orchestration: validate, expand, reconcile schemas, drop, copy.

``DatabaseCloner`` copies a set of tables from a source provider to a
target provider, or from one schema to another on the same connection.
The pass runs strictly in order:

1. Validate the configuration (no backend call for schema-pair rules)
2. Expand the root tables along their foreign keys, if asked to
3. Create or check the target schemas
4. Drop the target tables, dependents first
5. Create and populate the target tables, dependencies first

Nothing is rolled back: a failure leaves the tables processed so far in
place and names the table and phase it stopped at.

Usage:
    from db_cloner.cloner import DatabaseCloner
    from db_cloner.config import CloneConfiguration

    cloner = DatabaseCloner.from_clients(prod_adapter, backup_adapter)
    result = await cloner.clone(CloneConfiguration(
        tables=["dbo.order_lines"],
        expand_referenced=True,
        create_missing_schemas=True,
    ))
    print(result.copied)
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from db_cloner.adapters.base import DatabaseClient
from db_cloner.config.models import CloneConfiguration
from db_cloner.errors import (
    BackendFailureError,
    CloneCancelledError,
    CloneError,
    InvalidConfigurationError,
    SchemaMissingError,
)
from db_cloner.manager import DatabaseManager, MetadataProvider
from db_cloner.schema.models import CyclePolicy, DependencyDirection, TableIdentity
from db_cloner.schema.resolver import DependencyResolver, topological_order
from db_cloner.schema.statements import rewrite_schema

logger = logging.getLogger(__name__)


class CloneResult(BaseModel):
    """Outcome of a completed clone pass.

    ``tables`` is the dependency-ordered working set at the source;
    ``dropped`` and ``copied`` hold target identities in the order the
    steps ran.
    """

    tables: list[TableIdentity] = Field(default_factory=list)
    created_schemas: list[str] = Field(default_factory=list)
    dropped: list[TableIdentity] = Field(default_factory=list)
    copied: list[TableIdentity] = Field(default_factory=list)
    skipped: list[TableIdentity] = Field(default_factory=list)


def _same_schema(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.casefold() == b.casefold()


class DatabaseCloner:
    """Clones tables between two providers or two schemas of one provider.

    Args:
        source: Provider the tables are read from.
        target: Provider the tables are written to.  ``None`` (or the
            source object itself) clones within the source connection.

    Example:
        manager = DatabaseManager(adapter)
        cloner = DatabaseCloner(manager)
        await cloner.clone(CloneConfiguration(
            source_schema="dbo", target_schema="archive", tables=["orders"]
        ))
    """

    def __init__(
        self,
        source: MetadataProvider,
        target: MetadataProvider | None = None,
    ) -> None:
        self.source = source
        self.target = target if target is not None else source

    @classmethod
    def from_clients(
        cls,
        source_client: DatabaseClient,
        target_client: DatabaseClient | None = None,
    ) -> "DatabaseCloner":
        """Wrap clients in ``DatabaseManager`` providers.

        The same client object on both sides gives a single shared manager,
        i.e. a same-connection clone.
        """
        source = DatabaseManager(source_client)
        if target_client is None or target_client is source_client:
            return cls(source)
        return cls(source, DatabaseManager(target_client))

    @property
    def same_connection(self) -> bool:
        return self.source is self.target

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def clone(
        self,
        config: CloneConfiguration,
        *,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> CloneResult:
        """Run one clone pass.

        Args:
            config: Schemas, root tables and flags of the pass.
            cancel_event: When set, the pass stops before its next drop or
                copy step.
            deadline: Event loop time (``loop.time()``) after which the pass
                stops before its next drop or copy step.

        Returns:
            CloneResult describing what was created, dropped, copied and
            skipped.

        Raises:
            InvalidConfigurationError: Bad schema pair, malformed or missing
                table, or a table that would be cloned onto itself.
            CycleDetectedError: Expanded tables reference each other in a
                cycle.
            SchemaMissingError: A target schema is absent and may not be
                created.
            BackendFailureError: A backend call failed mid-pass.
            CloneCancelledError: ``cancel_event`` or ``deadline`` stopped
                the pass.
        """
        tables = await self.plan(config)

        logger.info(
            "cloning %d tables: %s", len(tables), ", ".join(str(t) for t in tables)
        )
        result = CloneResult(tables=tables)

        await self._reconcile_schemas(tables, config, result)
        await self._drop_phase(tables, config, result, cancel_event, deadline)
        await self._copy_phase(tables, config, result, cancel_event, deadline)

        logger.info(
            "clone complete: %d dropped, %d copied, %d skipped",
            len(result.dropped), len(result.copied), len(result.skipped),
        )
        return result

    # ------------------------------------------------------------------
    # Validation and expansion
    # ------------------------------------------------------------------

    async def plan(self, config: CloneConfiguration) -> list[TableIdentity]:
        """Validate ``config`` and return the ordered working set.

        Only reads the source catalog; nothing is created, dropped or
        copied.  ``clone()`` runs the same steps before its first write.

        Raises:
            InvalidConfigurationError: See ``clone()``.
            CycleDetectedError: Expanded tables reference each other in a
                cycle.
        """
        self._validate_schemas(config)

        roots = await self._resolve_roots(config)
        tables = await self._expand_tables(roots, config)
        self._check_self_overwrite(tables, config)
        return tables

    def _validate_schemas(self, config: CloneConfiguration) -> None:
        if (config.source_schema is None) != (config.target_schema is None):
            raise InvalidConfigurationError(
                "source_schema and target_schema must be set together"
            )
        if self.same_connection and _same_schema(config.source_schema, config.target_schema):
            raise InvalidConfigurationError(
                "Source and target are the same connection; "
                "set two different schemas to clone within it"
            )

    async def _resolve_roots(self, config: CloneConfiguration) -> list[TableIdentity]:
        """Parse the configured names into catalog-cased identities."""
        default_schema = config.source_schema
        if default_schema is None:
            default_schema = await self.source.default_schema()

        roots: list[TableIdentity] = []
        for text in config.tables:
            parsed = TableIdentity.parse(text, default_schema)
            found = await self.source.find_table(parsed)
            if found is None:
                raise InvalidConfigurationError(f"Table {parsed} doesn't exist at the source")
            if found not in roots:
                roots.append(found)
        return roots

    async def _expand_tables(
        self, roots: list[TableIdentity], config: CloneConfiguration
    ) -> list[TableIdentity]:
        if not config.expand_referenced:
            return roots

        graph = await DependencyResolver(self.source).resolve_many(
            roots, DependencyDirection.ASCENDING
        )
        # Roots are keys of the graph; the strict sort raises on any cycle
        return topological_order(roots, lambda t: graph.get(t, []), CyclePolicy.STRICT)

    def _check_self_overwrite(
        self, tables: list[TableIdentity], config: CloneConfiguration
    ) -> None:
        if not self.same_connection or config.skip_shared_tables:
            return
        for table in tables:
            if self.target_identity(table, config) == table:
                raise InvalidConfigurationError(
                    f"Table {table} would be dropped and cloned onto itself; "
                    f"enable skip_shared_tables to leave it alone"
                )

    # ------------------------------------------------------------------
    # Table rules
    # ------------------------------------------------------------------

    @staticmethod
    def _remaps(table: TableIdentity, config: CloneConfiguration) -> bool:
        """True when ``table`` moves from the source to the target schema."""
        return config.target_schema is not None and table.in_schema(config.source_schema)

    def target_identity(
        self, table: TableIdentity, config: CloneConfiguration
    ) -> TableIdentity:
        """Name ``table`` gets at the target."""
        if self._remaps(table, config):
            return table.with_schema(config.target_schema)
        return table

    def is_shared(self, table: TableIdentity, config: CloneConfiguration) -> bool:
        """True when ``skip_shared_tables`` leaves ``table`` untouched."""
        return (
            config.skip_shared_tables
            and self.same_connection
            and not table.in_schema(config.source_schema)
        )

    @staticmethod
    def _check_cancelled(
        table: TableIdentity,
        phase: str,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CloneCancelledError(table, phase)
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise CloneCancelledError(table, phase)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _reconcile_schemas(
        self,
        tables: list[TableIdentity],
        config: CloneConfiguration,
        result: CloneResult,
    ) -> None:
        required: list[str] = []
        for table in tables:
            if self._remaps(table, config) or self.is_shared(table, config):
                continue
            if not any(_same_schema(table.schema, s) for s in required):
                required.append(table.schema)
        if config.target_schema is not None and not any(
            _same_schema(config.target_schema, s) for s in required
        ):
            required.append(config.target_schema)

        try:
            existing = {s.casefold() for s in await self.target.list_schemas()}
        except CloneError:
            raise
        except Exception as e:
            raise BackendFailureError(None, "schema", e) from e

        for schema_name in required:
            if schema_name.casefold() in existing:
                continue
            if not config.create_missing_schemas:
                raise SchemaMissingError(schema_name)
            try:
                await self.target.create_schema(schema_name)
            except CloneError:
                raise
            except Exception as e:
                raise BackendFailureError(schema_name, "schema", e) from e
            result.created_schemas.append(schema_name)

    async def _drop_phase(
        self,
        tables: list[TableIdentity],
        config: CloneConfiguration,
        result: CloneResult,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> None:
        for table in reversed(tables):
            if self.is_shared(table, config):
                logger.debug("not dropping shared table %s", table)
                continue

            target = self.target_identity(table, config)
            self._check_cancelled(target, "drop", cancel_event, deadline)

            logger.info("dropping %s", target)
            try:
                await self.target.drop_table(target)
            except CloneError:
                raise
            except Exception as e:
                raise BackendFailureError(target, "drop", e) from e
            result.dropped.append(target)

    async def _copy_phase(
        self,
        tables: list[TableIdentity],
        config: CloneConfiguration,
        result: CloneResult,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> None:
        for table in tables:
            target = self.target_identity(table, config)
            self._check_cancelled(target, "copy", cancel_event, deadline)

            try:
                if self.is_shared(table, config) and await self.target.table_exists(target):
                    logger.debug("keeping shared table %s", target)
                    result.skipped.append(target)
                    continue

                definition = await self.source.describe_table(table)
                if definition is None:
                    raise InvalidConfigurationError(
                        f"Table {table} disappeared from the source"
                    )

                logger.info("copying %s to %s", table, target)
                statement = await self.source.build_clone_statement(definition)
                if self._remaps(table, config):
                    statement = rewrite_schema(
                        statement, config.source_schema, config.target_schema
                    )
                await self.target.execute_statement(statement)
            except CloneError:
                raise
            except Exception as e:
                raise BackendFailureError(target, "copy", e) from e
            result.copied.append(target)
