"""Interface the runtimes depend on for persistence."""

from __future__ import annotations

from typing import Protocol, Sequence

from experience_mcp.store.models import AppFile, Record, RecordLink, WorkItem


class ObjectStore(Protocol):
    """Tenant-scoped record store plus work item persistence.

    Every record read and write takes the organization id; a record owned by
    another organization is indistinguishable from a missing one.
    """

    def create_record(
        self,
        organization_id: str,
        type: str,
        name: str,
        *,
        subtype: str | None = None,
        description: str = "",
        status: str = "draft",
        custom_properties: dict[str, object] | None = None,
        created_by: str | None = None,
    ) -> Record: ...

    def get_record(self, organization_id: str, record_id: str) -> Record | None: ...

    def list_records(
        self, organization_id: str, type: str, limit: int | None = None
    ) -> list[Record]: ...

    def find_records_by_name_key(
        self, organization_id: str, type: str, name: str
    ) -> list[Record]: ...

    def find_record_by_signature(
        self, organization_id: str, type: str, signature: str
    ) -> Record | None: ...

    def update_record(
        self,
        organization_id: str,
        record_id: str,
        *,
        status: str | None = None,
        custom_properties: dict[str, object] | None = None,
    ) -> Record | None: ...

    def link_records(
        self,
        organization_id: str,
        from_id: str,
        to_ids: Sequence[str],
        link_type: str,
        created_by: str | None = None,
    ) -> int: ...

    def list_links(
        self, organization_id: str, from_id: str, link_type: str | None = None
    ) -> list[RecordLink]: ...

    def put_app_files(self, app_id: str, files: Sequence[AppFile]) -> None: ...

    def get_app_files(self, app_id: str) -> list[AppFile]: ...

    def create_work_item(self, item: WorkItem) -> None: ...

    def get_work_item(self, work_item_id: str) -> WorkItem | None: ...

    def update_work_item(
        self,
        work_item_id: str,
        *,
        status: str,
        results: dict[str, object] | None,
        progress: dict[str, int] | None,
        completed_at: str | None,
    ) -> None: ...

    def claim_work_item(self, work_item_id: str) -> bool: ...
