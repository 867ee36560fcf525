from __future__ import annotations

from experience_mcp.store.db import SqliteStore
from experience_mcp.store.models import PREVIEW, AppFile, WorkItem, normalize_name
from experience_mcp.utils.time import utc_now_iso

ORG = "org_1"
OTHER_ORG = "org_2"
USER = "user_1"


def _work_item(item_id: str = "wi_1") -> WorkItem:
    now = utc_now_iso()
    return WorkItem(
        id=item_id,
        organization_id=ORG,
        user_id=USER,
        type="experience_create",
        name="Launch Party",
        status=PREVIEW,
        created_at=now,
        updated_at=now,
        preview_data=[{"draft": {"experienceName": "Launch Party"}}],
    )


def test_normalize_name_collapses_case_and_whitespace() -> None:
    assert normalize_name("  Launch   PARTY ") == "launch party"
    assert normalize_name(None) == ""


def test_record_round_trip_and_org_scoping(store: SqliteStore) -> None:
    record = store.create_record(
        ORG,
        "event",
        "Launch Party",
        subtype="meetup",
        custom_properties={"location": "Berlin"},
        created_by=USER,
    )

    loaded = store.get_record(ORG, record.id)
    assert loaded is not None
    assert loaded.name == "Launch Party"
    assert loaded.custom_properties == {"location": "Berlin"}
    assert loaded.to_dict()["organizationId"] == ORG

    assert store.get_record(OTHER_ORG, record.id) is None


def test_find_records_by_name_key_ignores_case_and_spacing(store: SqliteStore) -> None:
    record = store.create_record(ORG, "product", "VIP  Ticket")
    store.create_record(OTHER_ORG, "product", "VIP Ticket")
    store.create_record(ORG, "form", "VIP Ticket")

    found = store.find_records_by_name_key(ORG, "product", "vip ticket")
    assert [r.id for r in found] == [record.id]


def test_find_record_by_signature(store: SqliteStore) -> None:
    record = store.create_record(
        ORG,
        "event",
        "Launch Party",
        custom_properties={"orchestration": {"signature": "event:key-1:event"}},
    )
    assert store.find_record_by_signature(ORG, "event", "event:key-1:event").id == record.id
    assert store.find_record_by_signature(ORG, "event", "event:key-2:event") is None
    assert store.find_record_by_signature(OTHER_ORG, "event", "event:key-1:event") is None


def test_update_record_returns_none_for_missing(store: SqliteStore) -> None:
    assert store.update_record(ORG, "missing", status="active") is None

    record = store.create_record(ORG, "checkout", "Checkout")
    updated = store.update_record(ORG, record.id, status="active")
    assert updated is not None
    assert updated.status == "active"
    assert store.get_record(ORG, record.id).status == "active"


def test_link_records_is_idempotent(store: SqliteStore) -> None:
    event = store.create_record(ORG, "event", "Launch Party")
    product = store.create_record(ORG, "product", "Ticket")

    assert store.link_records(ORG, product.id, [event.id], "ticket_for") == 1
    assert store.link_records(ORG, product.id, [event.id], "ticket_for") == 0

    links = store.list_links(ORG, product.id)
    assert len(links) == 1
    assert links[0].to_id == event.id
    assert links[0].link_type == "ticket_for"


def test_app_files_upsert_by_path(store: SqliteStore) -> None:
    app = store.create_record(ORG, "builder_app", "Site")
    store.put_app_files(app.id, [AppFile("b.tsx", "one"), AppFile("a.tsx", "two")])
    store.put_app_files(app.id, [AppFile("b.tsx", "three")])

    files = store.get_app_files(app.id)
    assert [(f.path, f.content) for f in files] == [("a.tsx", "two"), ("b.tsx", "three")]


def test_claim_work_item_succeeds_once(store: SqliteStore) -> None:
    store.create_work_item(_work_item())

    assert store.claim_work_item("wi_1") is True
    assert store.claim_work_item("wi_1") is False
    assert store.get_work_item("wi_1").status == "approved"


def test_update_work_item_keeps_first_completed_at(store: SqliteStore) -> None:
    store.create_work_item(_work_item())

    store.update_work_item(
        "wi_1", status="completed", results={"run": 1}, progress=None, completed_at="first"
    )
    store.update_work_item(
        "wi_1", status="completed", results={"run": 2}, progress=None, completed_at="second"
    )

    item = store.get_work_item("wi_1")
    assert item.completed_at == "first"
    assert item.results == {"run": 2}
    assert item.preview_data == [{"draft": {"experienceName": "Launch Party"}}]
