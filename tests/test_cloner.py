"""Tests for DatabaseCloner: validation, expansion, schema reconciliation,
drop/copy ordering, skip-shared, schema rewriting and cancellation.

Uses the in-memory ``FakeDatabase`` from conftest; the backend-free
validation tests use a bare ``AsyncMock`` provider so any call shows up.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeDatabase, make_table
from db_cloner.cloner import CloneResult, DatabaseCloner
from db_cloner.config import CloneConfiguration
from db_cloner.errors import (
    BackendFailureError,
    CloneCancelledError,
    CycleDetectedError,
    InvalidConfigurationError,
    SchemaMissingError,
)
from db_cloner.manager import DatabaseManager
from db_cloner.schema.models import TableIdentity


def T(text: str) -> TableIdentity:
    return TableIdentity.parse(text)


def _empty_target() -> FakeDatabase:
    return FakeDatabase(default_schema="dbo", schemas=["dbo", "ref"])


# ============================================================================
# Validation (no backend calls)
# ============================================================================


class TestValidation:
    """Schema-pair rules reject a configuration before any backend call."""

    @pytest.mark.parametrize(
        "source_schema,target_schema",
        [("dbo", None), (None, "archive")],
    )
    async def test_one_schema_set_rejected(self, source_schema, target_schema):
        source, target = AsyncMock(), AsyncMock()
        cloner = DatabaseCloner(source, target)
        config = CloneConfiguration(
            source_schema=source_schema, target_schema=target_schema, tables=["t"]
        )

        with pytest.raises(InvalidConfigurationError):
            await cloner.clone(config)

        assert source.method_calls == []
        assert target.method_calls == []

    async def test_same_connection_without_schemas_rejected(self):
        provider = AsyncMock()
        cloner = DatabaseCloner(provider)

        with pytest.raises(InvalidConfigurationError):
            await cloner.clone(CloneConfiguration(tables=["t"]))

        assert provider.method_calls == []

    async def test_same_connection_same_schema_rejected_case_insensitive(self):
        provider = AsyncMock()
        cloner = DatabaseCloner(provider, provider)
        config = CloneConfiguration(source_schema="dbo", target_schema="DBO", tables=["t"])

        with pytest.raises(InvalidConfigurationError):
            await cloner.clone(config)

        assert provider.method_calls == []

    async def test_different_connections_without_schemas_allowed(self, shop):
        cloner = DatabaseCloner(shop, _empty_target())
        tables = await cloner.plan(CloneConfiguration(tables=["customers"]))
        assert tables == [T("dbo.customers")]

    async def test_malformed_table_name_rejected(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)

        with pytest.raises(InvalidConfigurationError):
            await cloner.clone(CloneConfiguration(tables=["a.b.c"]))

        assert target.calls == []

    async def test_missing_root_rejected_before_side_effects(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)

        with pytest.raises(InvalidConfigurationError, match="dbo.nope"):
            await cloner.clone(CloneConfiguration(tables=["customers", "nope"]))

        assert target.calls == []

    async def test_bare_names_use_source_schema(self, shop):
        shop.add_table("sales.customers")
        cloner = DatabaseCloner(shop, _empty_target())
        config = CloneConfiguration(
            source_schema="sales", target_schema="sales", tables=["customers"]
        )

        tables = await cloner.plan(config)
        assert tables == [T("sales.customers")]

    async def test_roots_take_catalog_spelling(self, shop):
        cloner = DatabaseCloner(shop, _empty_target())
        tables = await cloner.plan(CloneConfiguration(tables=["DBO.Customers"]))
        assert tables[0].schema == "dbo"
        assert tables[0].name == "customers"


# ============================================================================
# Expansion
# ============================================================================


class TestExpansion:
    """Working set with and without foreign key expansion."""

    async def test_expansion_orders_dependencies_first(self, shop):
        cloner = DatabaseCloner(shop, _empty_target())
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        tables = await cloner.plan(config)

        assert tables == [
            T("dbo.customers"),
            T("dbo.orders"),
            T("ref.products"),
            T("dbo.order_lines"),
        ]
        for index, table in enumerate(tables):
            for ref in shop.tables[table].referenced_tables():
                assert tables.index(ref) < index

    async def test_without_expansion_keeps_given_order_deduplicated(self, shop):
        cloner = DatabaseCloner(shop, _empty_target())
        config = CloneConfiguration(tables=["order_lines", "orders", "dbo.ORDERS"])

        tables = await cloner.plan(config)

        assert tables == [T("dbo.order_lines"), T("dbo.orders")]

    async def test_cycle_rejected_when_expanding(self):
        source = FakeDatabase(default_schema="dbo")
        source.add_table("dbo.a", ["dbo.b"])
        source.add_table("dbo.b", ["dbo.a"])
        target = FakeDatabase(default_schema="dbo")
        cloner = DatabaseCloner(source, target)

        with pytest.raises(CycleDetectedError):
            await cloner.clone(CloneConfiguration(tables=["a"], expand_referenced=True))

        assert target.calls == []

    async def test_self_reference_is_not_a_cycle(self):
        source = FakeDatabase(default_schema="dbo")
        source.add_table("dbo.employees", ["dbo.employees"])
        cloner = DatabaseCloner(source, FakeDatabase(default_schema="dbo"))

        result = await cloner.clone(
            CloneConfiguration(tables=["employees"], expand_referenced=True)
        )

        assert result.copied == [T("dbo.employees")]


# ============================================================================
# Cross-connection clone
# ============================================================================


class TestCrossConnectionClone:
    """Cloning between two providers."""

    async def test_drops_in_reverse_then_copies_forward(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        result = await cloner.clone(config)

        expected = [T("dbo.customers"), T("dbo.orders"), T("ref.products"), T("dbo.order_lines")]
        assert isinstance(result, CloneResult)
        assert result.tables == expected
        assert target.operations("drop") == list(reversed(expected))
        assert target.operations("execute") == expected
        # every drop happens before the first create
        assert [op for op, _ in target.calls] == ["drop"] * 4 + ["execute"] * 4
        assert result.copied == expected
        assert result.skipped == []

    async def test_target_tables_reference_each_other(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)

        await cloner.clone(CloneConfiguration(tables=["order_lines"], expand_referenced=True))

        assert target.tables[T("dbo.order_lines")].referenced_tables() == [
            T("dbo.orders"),
            T("ref.products"),
        ]

    async def test_rows_are_scripted(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)

        await cloner.clone(CloneConfiguration(tables=["customers"]))

        statement = target.statements[T("dbo.customers")]
        assert 'INSERT INTO "dbo"."customers"' in statement
        assert "(1)" in statement and "(2)" in statement

    async def test_reclone_replaces_existing_tables(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        await cloner.clone(config)
        result = await cloner.clone(config)

        assert len(result.copied) == 4

    async def test_missing_schema_fails_before_any_drop(self, shop):
        target = FakeDatabase(default_schema="dbo", schemas=["dbo"])
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        with pytest.raises(SchemaMissingError) as exc_info:
            await cloner.clone(config)

        assert exc_info.value.schema == "ref"
        assert target.operations("drop") == []

    async def test_missing_schema_created_when_allowed(self, shop):
        target = FakeDatabase(default_schema="dbo", schemas=["dbo"])
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(
            tables=["order_lines"], expand_referenced=True, create_missing_schemas=True
        )

        result = await cloner.clone(config)

        assert result.created_schemas == ["ref"]
        assert target.operations("create_schema") == ["ref"]
        assert T("ref.products") in target.tables

    async def test_target_schema_remaps_source_schema_tables(self, shop):
        target = FakeDatabase(default_schema="public", schemas=["public", "ref"])
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(
            source_schema="dbo",
            target_schema="archive",
            tables=["order_lines"],
            expand_referenced=True,
            create_missing_schemas=True,
        )

        result = await cloner.clone(config)

        assert result.created_schemas == ["archive"]
        assert result.copied == [
            T("archive.customers"),
            T("archive.orders"),
            T("ref.products"),
            T("archive.order_lines"),
        ]
        assert target.tables[T("archive.order_lines")].referenced_tables() == [
            T("archive.orders"),
            T("ref.products"),
        ]


# ============================================================================
# Same-connection clone
# ============================================================================


class TestSameConnectionClone:
    """Schema-to-schema cloning on one provider."""

    @pytest.fixture
    def archive_config(self) -> CloneConfiguration:
        return CloneConfiguration(
            source_schema="dbo",
            target_schema="archive",
            tables=["order_lines"],
            expand_referenced=True,
            create_missing_schemas=True,
            skip_shared_tables=True,
        )

    async def test_shared_tables_never_dropped_or_recreated(self, shop, archive_config):
        cloner = DatabaseCloner(shop)

        result = await cloner.clone(archive_config)

        assert T("ref.products") not in shop.operations("drop")
        assert T("ref.products") not in shop.operations("execute")
        assert result.skipped == [T("ref.products")]
        assert shop.operations("drop") == [
            T("archive.order_lines"),
            T("archive.orders"),
            T("archive.customers"),
        ]
        assert result.copied == [
            T("archive.customers"),
            T("archive.orders"),
            T("archive.order_lines"),
        ]

    async def test_copies_reference_archive_and_shared_tables(self, shop, archive_config):
        await DatabaseCloner(shop).clone(archive_config)

        assert shop.tables[T("archive.order_lines")].referenced_tables() == [
            T("archive.orders"),
            T("ref.products"),
        ]
        # source tables untouched
        assert shop.tables[T("dbo.order_lines")].referenced_tables() == [
            T("dbo.orders"),
            T("ref.products"),
        ]

    async def test_target_schema_created(self, shop, archive_config):
        result = await DatabaseCloner(shop).clone(archive_config)
        assert result.created_schemas == ["archive"]

    async def test_missing_target_schema_without_create(self, shop, archive_config):
        config = archive_config.model_copy(update={"create_missing_schemas": False})

        with pytest.raises(SchemaMissingError):
            await DatabaseCloner(shop).clone(config)

        assert shop.calls == []

    async def test_self_overwrite_rejected_without_skip_shared(self, shop, archive_config):
        config = archive_config.model_copy(update={"skip_shared_tables": False})

        with pytest.raises(InvalidConfigurationError, match="ref.products"):
            await DatabaseCloner(shop).clone(config)

        assert shop.calls == []

    async def test_literals_keep_source_schema_name(self, shop, archive_config):
        shop.add(
            make_table("dbo", "notes", extra_columns=["body"]),
            rows=[{"id": 1, "body": "copied from dbo.orders"}],
        )
        config = archive_config.model_copy(
            update={"tables": ["notes"], "expand_referenced": False}
        )

        await DatabaseCloner(shop).clone(config)

        statement = shop.statements[T("archive.notes")]
        assert 'CREATE TABLE "archive"."notes"' in statement
        assert "'copied from dbo.orders'" in statement
        assert '"dbo"' not in statement


# ============================================================================
# Failures and cancellation
# ============================================================================


class TestFailures:
    """Backend failures are wrapped once and nothing is rolled back."""

    async def test_copy_failure_names_table_and_phase(self, shop):
        target = _empty_target()
        cloner = DatabaseCloner(shop, target)
        # order_lines first: its foreign keys point at tables not copied yet
        config = CloneConfiguration(tables=["order_lines", "orders"])

        with pytest.raises(BackendFailureError) as exc_info:
            await cloner.clone(config)

        error = exc_info.value
        assert error.phase == "copy"
        assert error.table == T("dbo.order_lines")
        assert isinstance(error.__cause__, RuntimeError)
        assert str(error.__cause__) in str(error)

    async def test_drop_failure_leaves_earlier_work(self, shop):
        target = _empty_target()
        target.failures[("drop", T("dbo.orders"))] = RuntimeError("lock timeout")
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        with pytest.raises(BackendFailureError, match="lock timeout") as exc_info:
            await cloner.clone(config)

        assert exc_info.value.phase == "drop"
        assert target.operations("drop") == [
            T("dbo.order_lines"),
            T("ref.products"),
            T("dbo.orders"),
        ]
        assert target.operations("execute") == []

    async def test_schema_failure_wrapped(self, shop):
        target = FakeDatabase(default_schema="dbo", schemas=["dbo"])
        target.create_schema = AsyncMock(side_effect=RuntimeError("permission denied"))
        cloner = DatabaseCloner(shop, target)
        config = CloneConfiguration(
            tables=["order_lines"], expand_referenced=True, create_missing_schemas=True
        )

        with pytest.raises(BackendFailureError) as exc_info:
            await cloner.clone(config)

        assert exc_info.value.phase == "schema"


class TestCancellation:
    """Cancellation stops the pass between steps, never mid-statement."""

    async def test_cancel_before_start(self, shop):
        target = _empty_target()
        event = asyncio.Event()
        event.set()

        with pytest.raises(CloneCancelledError) as exc_info:
            await DatabaseCloner(shop, target).clone(
                CloneConfiguration(tables=["customers"]), cancel_event=event
            )

        assert exc_info.value.phase == "drop"
        assert target.operations("drop") == []

    async def test_cancel_after_first_drop(self, shop):
        target = _empty_target()
        event = asyncio.Event()
        target.on_call = lambda op, arg: event.set() if op == "drop" else None
        config = CloneConfiguration(tables=["order_lines"], expand_referenced=True)

        with pytest.raises(CloneCancelledError) as exc_info:
            await DatabaseCloner(shop, target).clone(config, cancel_event=event)

        assert target.operations("drop") == [T("dbo.order_lines")]
        assert exc_info.value.table == T("ref.products")

    async def test_deadline_passed(self, shop):
        target = _empty_target()
        deadline = asyncio.get_running_loop().time() - 1

        with pytest.raises(CloneCancelledError):
            await DatabaseCloner(shop, target).clone(
                CloneConfiguration(tables=["customers"]), deadline=deadline
            )

        assert target.calls == []


# ============================================================================
# Construction
# ============================================================================


class TestFromClients:
    """from_clients wraps clients in DatabaseManager providers."""

    def test_same_client_is_same_connection(self):
        client = MagicMock()
        cloner = DatabaseCloner.from_clients(client, client)
        assert cloner.same_connection
        assert isinstance(cloner.source, DatabaseManager)

    def test_no_target_is_same_connection(self):
        cloner = DatabaseCloner.from_clients(MagicMock())
        assert cloner.same_connection

    def test_different_clients(self):
        cloner = DatabaseCloner.from_clients(MagicMock(), MagicMock())
        assert not cloner.same_connection
        assert cloner.source.client is not cloner.target.client
