"""Snapshot manifest models.

A snapshot directory holds one create-and-populate script per table plus a
``manifest.json`` listing the scripts in dependency order.

Usage:
    from db_cloner.backup.models import SnapshotManifest, SnapshotEntry

    manifest = SnapshotManifest(tables=[
        SnapshotEntry(schema_name="dbo", table_name="orders", file="001_dbo.orders.sql"),
        SnapshotEntry(schema_name="dbo", table_name="order_lines", file="002_dbo.order_lines.sql"),
    ])
"""

from datetime import datetime

from pydantic import BaseModel, Field

from db_cloner.schema.models import TableIdentity

MANIFEST_FILE = "manifest.json"
MANIFEST_VERSION = "1.0"


class SnapshotEntry(BaseModel):
    """One scripted table of a snapshot."""

    schema_name: str
    table_name: str
    file: str           # script file name, relative to the snapshot directory

    @property
    def identity(self) -> TableIdentity:
        return TableIdentity(self.schema_name, self.table_name)


class SnapshotManifest(BaseModel):
    """Snapshot manifest. Tables ordered by dependency (referenced first)."""

    created_at: datetime = Field(default_factory=datetime.now)
    version: str = MANIFEST_VERSION
    tables: list[SnapshotEntry] = Field(default_factory=list)
