"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from experience_mcp.auth.api_keys import ApiKeyVerifier
from experience_mcp.config import Settings, load_settings
from experience_mcp.connections.executor import ConnectionExecutor
from experience_mcp.contract.loader import load_contract
from experience_mcp.contract.models import ExperienceContract
from experience_mcp.playbooks.runtime import OrchestrationRuntime
from experience_mcp.store.db import SqliteStore
from experience_mcp.work_items.tracker import WorkItemTracker


@dataclass
class AppContext:
    """Application-wide dependency container.

    Initialized once at startup and cached for the lifetime of the process.
    """

    settings: Settings
    store: SqliteStore
    contract: ExperienceContract
    tracker: WorkItemTracker
    runtime: OrchestrationRuntime
    executor: ConnectionExecutor
    verifier: ApiKeyVerifier | None = None


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the application context."""
    settings = load_settings()
    contract = load_contract(settings.contract.path)
    store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)

    verifier = None
    if settings.auth.api_keys_path:
        verifier = ApiKeyVerifier.from_file(settings.auth.api_keys_path)

    return AppContext(
        settings=settings,
        store=store,
        contract=contract,
        tracker=WorkItemTracker(store, preview_ttl_seconds=settings.work_items.preview_ttl_seconds),
        runtime=OrchestrationRuntime(store, contract),
        executor=ConnectionExecutor(store),
        verifier=verifier,
    )
