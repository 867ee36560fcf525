from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from experience_mcp.connections.executor import ConnectionExecutor
from experience_mcp.contract.loader import load_contract
from experience_mcp.contract.models import ExperienceContract
from experience_mcp.playbooks.runtime import OrchestrationRuntime
from experience_mcp.store.db import SqliteStore
from experience_mcp.store.models import BUILDER_APP, AppFile, Record
from experience_mcp.work_items.tracker import WorkItemTracker

PROJECT_ROOT = Path(__file__).resolve().parents[1]

ORG = "org_1"
OTHER_ORG = "org_2"
USER = "user_1"


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    db = SqliteStore(str(tmp_path / "experience.sqlite"), wal=False)
    yield db
    db.close()


@pytest.fixture
def contract() -> ExperienceContract:
    return load_contract(str(PROJECT_ROOT / "contract.yaml"))


@pytest.fixture
def runtime(store: SqliteStore, contract: ExperienceContract) -> OrchestrationRuntime:
    return OrchestrationRuntime(store, contract)


@pytest.fixture
def tracker(store: SqliteStore) -> WorkItemTracker:
    return WorkItemTracker(store, preview_ttl_seconds=3600)


@pytest.fixture
def executor(store: SqliteStore) -> ConnectionExecutor:
    return ConnectionExecutor(store)


@pytest.fixture
def builder_app(store: SqliteStore) -> Record:
    app = store.create_record(ORG, BUILDER_APP, "Launch Site", created_by=USER)
    store.put_app_files(
        app.id,
        [
            AppFile(
                path="components/ContactForm.tsx",
                content=(
                    "export default function ContactForm() {\n"
                    "  return <form onSubmit={handleSubmit}><input name='email' /></form>;\n"
                    "}\n"
                ),
            ),
            AppFile(
                path="components/Pricing.tsx",
                content=(
                    "const plans = [\n"
                    "  { name: 'Basic', price: 49.99 },\n"
                    "  { name: 'Pro', price: '99' },\n"
                    "];\n"
                ),
            ),
        ],
    )
    return app


@pytest.fixture
def app_context(store, contract, runtime, tracker, executor) -> SimpleNamespace:
    """Stand-in for AppContext with a default stdio principal."""
    settings = SimpleNamespace(
        auth=SimpleNamespace(default_organization_id=ORG, default_user_id=USER),
        matching=SimpleNamespace(min_similarity=0.3, max_matches=5),
        work_items=SimpleNamespace(preview_ttl_seconds=3600),
    )
    return SimpleNamespace(
        settings=settings,
        store=store,
        contract=contract,
        tracker=tracker,
        runtime=runtime,
        executor=executor,
        verifier=None,
    )
