"""Persistence for records, links, builder app files and work items."""

from experience_mcp.store.base import ObjectStore
from experience_mcp.store.db import SqliteStore
from experience_mcp.store.models import AppFile, Record, RecordLink, WorkItem

__all__ = ["AppFile", "ObjectStore", "Record", "RecordLink", "SqliteStore", "WorkItem"]
