"""Idempotent orchestration runtime for composite experience creation.

Each playbook step resolves to exactly one record:

1. a record stamped with this step's signature (``<experienceKey>:<stepKey>``)
   is replayed as ``reused``;
2. otherwise a record with the same natural key (organization, type,
   normalized name) is reused or reported as a duplicate, depending on the
   duplicate strategy;
3. otherwise the record is created and stamped.

Retries reconcile with whatever a previous partial run left behind. Nothing
is rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from experience_mcp.contract.models import ExperienceContract
from experience_mcp.errors import InputValidationError
from experience_mcp.playbooks.drafts import DerivationResult, ExperienceDraft, ProductDraft
from experience_mcp.playbooks.normalizer import derive_event_draft
from experience_mcp.store.base import ObjectStore
from experience_mcp.store.models import Record
from experience_mcp.utils.hashing import stable_digest
from experience_mcp.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

REUSE_EXISTING = "reuse_existing"
FAIL_ON_DUPLICATE = "fail_on_duplicate"
DUPLICATE_STRATEGIES = (REUSE_EXISTING, FAIL_ON_DUPLICATE)

CREATED = "created"
REUSED = "reused"
SKIPPED = "skipped"
FAILED = "failed"

REPLAY_SAME_KEY = "idempotent_replay_same_key"
FIX_INPUT_THEN_RETRY = "fix_input_then_retry"
NOT_APPLICABLE = "not_applicable"

PUBLISHED_STATUS = "active"


@dataclass
class RunOptions:
    duplicate_strategy: str = REUSE_EXISTING
    fail_fast: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RunOptions":
        data = data or {}
        strategy = data.get("duplicateStrategy") or REUSE_EXISTING
        if strategy not in DUPLICATE_STRATEGIES:
            raise InputValidationError(
                f"Unknown duplicateStrategy: {strategy}",
                reasons=[f"duplicateStrategy must be one of {list(DUPLICATE_STRATEGIES)}"],
            )
        return cls(duplicate_strategy=strategy, fail_fast=data.get("failFast") is True)

    def to_dict(self) -> dict[str, Any]:
        return {"duplicateStrategy": self.duplicate_strategy, "failFast": self.fail_fast}


@dataclass
class StepLogEntry:
    step_key: str
    artifact_type: str
    status: str
    signature: str
    attempts: int = 1
    retryable: bool = True
    retry_strategy: str = REPLAY_SAME_KEY
    artifact_id: str | None = None
    artifact_name: str | None = None
    reason: str | None = None
    duplicate_resolution: str = "none"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stepKey": self.step_key,
            "artifactType": self.artifact_type,
            "status": self.status,
            "attempts": self.attempts,
            "signature": self.signature,
            "retryable": self.retryable,
            "retryStrategy": self.retry_strategy,
            "duplicateResolution": self.duplicate_resolution,
        }
        if self.artifact_id is not None:
            data["artifactId"] = self.artifact_id
        if self.artifact_name is not None:
            data["artifactName"] = self.artifact_name
        if self.reason is not None:
            data["reason"] = self.reason
        return data


def build_experience_key(
    playbook: str,
    payload_digest: str,
    idempotency_key: str | None = None,
    conversation_id: str | None = None,
) -> str:
    explicit = (idempotency_key or "").strip()
    if explicit:
        return f"{playbook}:{explicit}"
    return f"{playbook}:{conversation_id or 'no-conversation'}:{payload_digest}"


def payload_digest(payload: Any) -> str:
    return stable_digest(payload)


@dataclass
class _Run:
    """State shared by the steps of one playbook invocation."""

    organization_id: str
    user_id: str
    conversation_id: str | None
    playbook: str
    experience_key: str
    payload_digest: str
    options: RunOptions
    steps: list[StepLogEntry] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)

    def signature(self, step_key: str) -> str:
        return f"{self.experience_key}:{step_key}"

    def stamp(self, step_key: str) -> dict[str, Any]:
        return {
            "playbook": self.playbook,
            "experienceKey": self.experience_key,
            "stepKey": step_key,
            "signature": self.signature(step_key),
            "payloadDigest": self.payload_digest,
            "conversationId": self.conversation_id,
            "stampedAt": utc_now_iso(),
        }

    def record(self, entry: StepLogEntry) -> StepLogEntry:
        self.steps.append(entry)
        if entry.status == FAILED:
            self.failed_steps.append(entry.step_key)
        return entry

    def skip(
        self,
        step_key: str,
        artifact_type: str,
        reason: str,
        retry_strategy: str = FIX_INPUT_THEN_RETRY,
    ) -> StepLogEntry:
        return self.record(
            StepLogEntry(
                step_key=step_key,
                artifact_type=artifact_type,
                status=SKIPPED,
                signature=self.signature(step_key),
                retryable=retry_strategy != NOT_APPLICABLE,
                retry_strategy=retry_strategy,
                reason=reason,
            )
        )

    def failed_dependency(self, *dependencies: str) -> str | None:
        """First failed step among ``dependencies`` when failFast is set.

        A dependency ending in ``:`` matches every step with that prefix.
        """
        if not self.options.fail_fast:
            return None
        for step_key in self.failed_steps:
            for dependency in dependencies:
                if step_key == dependency or (
                    dependency.endswith(":") and step_key.startswith(dependency)
                ):
                    return step_key
        return None

    def skip_blocked(self, step_key: str, artifact_type: str, dependency: str) -> StepLogEntry:
        return self.skip(
            step_key,
            artifact_type,
            f"Skipped because failFast is set and step {dependency} failed.",
        )


class OrchestrationRuntime:
    def __init__(self, store: ObjectStore, contract: ExperienceContract) -> None:
        self._store = store
        self._contract = contract
        self._runners = {"event": self._run_event_playbook}

    @property
    def contract(self) -> ExperienceContract:
        return self._contract

    def derive(self, playbook: str, payload: Any) -> DerivationResult:
        """Derive the draft for a playbook without touching the store."""
        return derive_event_draft(payload, self._contract.get_playbook(playbook))

    def check_playbook(self, playbook: str) -> dict[str, Any] | None:
        """Return an error response for unknown or unimplemented playbooks."""
        key = playbook.strip().lower()
        definition = self._contract.get_playbook(key)
        if definition is None:
            return {
                "success": False,
                "error": f'Unsupported playbook "{playbook}"',
                "supportedPlaybooks": self._contract.playbook_ids,
            }
        if not definition.implemented or key not in self._runners:
            return {
                "success": False,
                "error": (
                    f'Playbook "{key}" is registered in contract but runtime is not '
                    "implemented yet."
                ),
            }
        return None

    async def create_experience(
        self,
        organization_id: str,
        user_id: str,
        playbook: str,
        payload: Any = None,
        *,
        conversation_id: str | None = None,
        idempotency_key: str | None = None,
        options: RunOptions | dict[str, Any] | None = None,
        derived: DerivationResult | None = None,
        digest: str | None = None,
    ) -> dict[str, Any]:
        """Run a playbook and return the artifact bundle and step log.

        ``derived`` and ``digest`` come from a stored preview snapshot; when
        they are omitted the draft is derived from ``payload``.
        """
        rejection = self.check_playbook(playbook)
        if rejection is not None:
            return rejection
        key = playbook.strip().lower()
        run_options = options if isinstance(options, RunOptions) else RunOptions.from_dict(options)

        if derived is None:
            derived = self.derive(key, payload)
        digest = digest or payload_digest(payload)
        run = _Run(
            organization_id=organization_id,
            user_id=user_id,
            conversation_id=conversation_id,
            playbook=key,
            experience_key=build_experience_key(key, digest, idempotency_key, conversation_id),
            payload_digest=digest,
            options=run_options,
        )
        logger.info(
            "Running playbook %s for org %s (key=%s, strategy=%s, failFast=%s)",
            key,
            organization_id,
            run.experience_key,
            run_options.duplicate_strategy,
            run_options.fail_fast,
        )

        bundle, warnings = await self._runners[key](run, derived.draft)

        summary = {status: 0 for status in (CREATED, REUSED, SKIPPED, FAILED)}
        for step in run.steps:
            summary[step.status] += 1

        response: dict[str, Any] = {
            "success": summary[FAILED] == 0,
            "playbook": key,
            "experienceName": derived.draft.experience_name,
            "contractVersion": self._contract.version,
            "idempotencyKey": run.experience_key,
            "payloadDigest": digest,
            "artifactBundle": bundle,
            "stepLog": [step.to_dict() for step in run.steps],
            "summary": summary,
            "unsupportedItems": [item.to_dict() for item in derived.unsupported_items],
            "detectedItemCount": derived.detected_item_count,
        }
        if warnings:
            response["warnings"] = warnings
        logger.info("Playbook %s finished: %s", key, summary)
        return response

    # Event playbook

    async def _run_event_playbook(
        self,
        run: _Run,
        draft: ExperienceDraft,
    ) -> tuple[dict[str, Any], list[str]]:
        event = draft.event
        event_step = await self._ensure_artifact(
            run,
            "event",
            "event",
            event.title,
            lambda props: self._store.create_record(
                run.organization_id,
                "event",
                event.title,
                subtype=event.event_type,
                description=event.description,
                status="published" if event.published else "draft",
                custom_properties={
                    **props,
                    "startDate": event.start_date.isoformat(),
                    "endDate": event.end_date.isoformat(),
                    "location": event.location,
                    "timezone": event.timezone,
                    "capacity": event.capacity,
                    "agenda": event.agenda,
                    "registrationRequired": event.registration_required,
                    "virtualEventUrl": event.virtual_event_url,
                    "ticketTypes": [p.name for p in draft.products],
                },
                created_by=run.user_id,
            ),
        )
        event_id = event_step.artifact_id if event_step.status != FAILED else None

        product_ids: list[str] = []
        for index, product in enumerate(draft.products, start=1):
            step_key = f"product:{index}"
            blocker = run.failed_dependency("event")
            if blocker:
                run.skip_blocked(step_key, "product", blocker)
            elif event_id is None:
                run.skip(step_key, "product", "Blocked because required event step failed.")
            else:
                step = await self._ensure_artifact(
                    run,
                    step_key,
                    "product",
                    product.name,
                    self._product_factory(run, product, event_id),
                )
                if step.status != FAILED and step.artifact_id:
                    product_ids.append(step.artifact_id)

        form_id: str | None = None
        blocker = run.failed_dependency("event")
        if draft.form is None:
            run.skip("form", "form", "Form creation disabled by payload.", NOT_APPLICABLE)
        elif blocker:
            run.skip_blocked("form", "form", blocker)
        else:
            form = draft.form
            form_step = await self._ensure_artifact(
                run,
                "form",
                "form",
                form.name,
                lambda props: self._store.create_record(
                    run.organization_id,
                    "form",
                    form.name,
                    subtype=form.subtype,
                    description=form.description,
                    custom_properties={
                        **props,
                        "eventId": event_id,
                        "formSchema": {"fields": _registration_fields()},
                    },
                    created_by=run.user_id,
                ),
            )
            if form_step.status != FAILED:
                form_id = form_step.artifact_id

        checkout = draft.checkout
        checkout_id: str | None = None
        blocker = run.failed_dependency("event", "product:", "form")
        if blocker:
            run.skip_blocked("checkout", "checkout", blocker)
        elif event_id is None:
            run.skip("checkout", "checkout", "Blocked because required event step failed.")
        elif not product_ids:
            run.skip(
                "checkout", "checkout", "Blocked because no product artifacts are available."
            )
        else:
            checkout_step = await self._ensure_artifact(
                run,
                "checkout",
                "checkout",
                checkout.name,
                lambda props: self._store.create_record(
                    run.organization_id,
                    "checkout",
                    checkout.name,
                    subtype="event_checkout",
                    description=checkout.description,
                    custom_properties={
                        **props,
                        "eventId": event_id,
                        "productIds": list(product_ids),
                        "formId": form_id,
                        "paymentMode": checkout.payment_mode,
                        "paymentProviders": list(checkout.payment_providers),
                        "template": "default",
                    },
                    created_by=run.user_id,
                ),
            )
            if checkout_step.status != FAILED:
                checkout_id = checkout_step.artifact_id

        if checkout.published:
            blocker = run.failed_dependency("checkout")
            if blocker:
                run.skip_blocked("checkout:publish", "checkout", blocker)
            elif checkout_id is None:
                run.skip(
                    "checkout:publish",
                    "checkout",
                    "Blocked because the checkout is not available.",
                )
            else:
                await self._publish_checkout(run, checkout_id, checkout.name)

        warnings = await self._link_artifacts(run, event_id, product_ids, form_id, checkout_id)
        bundle = {
            "eventId": event_id,
            "productIds": product_ids,
            "formId": form_id,
            "checkoutId": checkout_id,
        }
        return bundle, warnings

    def _product_factory(
        self,
        run: _Run,
        product: ProductDraft,
        event_id: str,
    ) -> Callable[[dict[str, Any]], Record]:
        def create(props: dict[str, Any]) -> Record:
            return self._store.create_record(
                run.organization_id,
                "product",
                product.name,
                subtype=product.subtype,
                description=product.description,
                custom_properties={
                    **props,
                    "price": product.price,
                    "currency": product.currency,
                    "ticketTier": product.ticket_tier,
                    "eventId": event_id,
                },
                created_by=run.user_id,
            )

        return create

    async def _ensure_artifact(
        self,
        run: _Run,
        step_key: str,
        artifact_type: str,
        artifact_name: str,
        create: Callable[[dict[str, Any]], Record],
    ) -> StepLogEntry:
        signature = run.signature(step_key)
        attempts = 0
        try:
            attempts += 1
            existing = await asyncio.to_thread(
                self._store.find_record_by_signature,
                run.organization_id,
                artifact_type,
                signature,
            )
            if existing is not None:
                return run.record(
                    StepLogEntry(
                        step_key=step_key,
                        artifact_type=artifact_type,
                        status=REUSED,
                        signature=signature,
                        attempts=attempts,
                        artifact_id=existing.id,
                        artifact_name=existing.name,
                        duplicate_resolution="signature_replay",
                    )
                )

            attempts += 1
            same_name = await asyncio.to_thread(
                self._store.find_records_by_name_key,
                run.organization_id,
                artifact_type,
                artifact_name,
            )
            if same_name:
                duplicate = same_name[0]
                if run.options.duplicate_strategy == FAIL_ON_DUPLICATE:
                    return run.record(
                        StepLogEntry(
                            step_key=step_key,
                            artifact_type=artifact_type,
                            status=FAILED,
                            signature=signature,
                            attempts=attempts,
                            retry_strategy=FIX_INPUT_THEN_RETRY,
                            artifact_id=duplicate.id,
                            artifact_name=duplicate.name,
                            reason=(
                                f'duplicate: {artifact_type} named "{artifact_name}" already '
                                'exists and duplicateStrategy is "fail_on_duplicate".'
                            ),
                        )
                    )
                await asyncio.to_thread(
                    self._store.update_record,
                    run.organization_id,
                    duplicate.id,
                    custom_properties={
                        **duplicate.custom_properties,
                        "orchestration": run.stamp(step_key),
                    },
                )
                return run.record(
                    StepLogEntry(
                        step_key=step_key,
                        artifact_type=artifact_type,
                        status=REUSED,
                        signature=signature,
                        attempts=attempts,
                        artifact_id=duplicate.id,
                        artifact_name=duplicate.name,
                        duplicate_resolution="name_reuse",
                    )
                )

            attempts += 1
            created = await asyncio.to_thread(create, {"orchestration": run.stamp(step_key)})
        except Exception as exc:
            logger.warning("Step %s failed for %s: %s", step_key, run.experience_key, exc)
            return run.record(
                StepLogEntry(
                    step_key=step_key,
                    artifact_type=artifact_type,
                    status=FAILED,
                    signature=signature,
                    attempts=attempts,
                    retry_strategy=FIX_INPUT_THEN_RETRY,
                    artifact_name=artifact_name,
                    reason=str(exc) or type(exc).__name__,
                )
            )
        return run.record(
            StepLogEntry(
                step_key=step_key,
                artifact_type=artifact_type,
                status=CREATED,
                signature=signature,
                attempts=attempts,
                artifact_id=created.id,
                artifact_name=created.name,
            )
        )

    async def _publish_checkout(self, run: _Run, checkout_id: str, name: str) -> StepLogEntry:
        step_key = "checkout:publish"
        signature = run.signature(step_key)
        try:
            current = await asyncio.to_thread(
                self._store.get_record, run.organization_id, checkout_id
            )
            if current is not None and current.status == PUBLISHED_STATUS:
                return run.record(
                    StepLogEntry(
                        step_key=step_key,
                        artifact_type="checkout",
                        status=REUSED,
                        signature=signature,
                        artifact_id=checkout_id,
                        artifact_name=name,
                        reason="Checkout is already published.",
                    )
                )
            properties = dict(current.custom_properties) if current is not None else {}
            properties["publishedAt"] = utc_now_iso()
            updated = await asyncio.to_thread(
                self._store.update_record,
                run.organization_id,
                checkout_id,
                status=PUBLISHED_STATUS,
                custom_properties=properties,
            )
            if updated is None:
                raise LookupError(f"Checkout {checkout_id} no longer exists")
        except Exception as exc:
            logger.warning("Publishing checkout %s failed: %s", checkout_id, exc)
            return run.record(
                StepLogEntry(
                    step_key=step_key,
                    artifact_type="checkout",
                    status=FAILED,
                    signature=signature,
                    retry_strategy=FIX_INPUT_THEN_RETRY,
                    artifact_id=checkout_id,
                    artifact_name=name,
                    reason=str(exc) or type(exc).__name__,
                )
            )
        return run.record(
            StepLogEntry(
                step_key=step_key,
                artifact_type="checkout",
                status=CREATED,
                signature=signature,
                artifact_id=checkout_id,
                artifact_name=name,
                reason="Checkout published because payload requested published=true.",
            )
        )

    async def _link_artifacts(
        self,
        run: _Run,
        event_id: str | None,
        product_ids: list[str],
        form_id: str | None,
        checkout_id: str | None,
    ) -> list[str]:
        links: list[tuple[str, list[str], str]] = []
        if event_id:
            links.extend((product_id, [event_id], "ticket_for") for product_id in product_ids)
        if checkout_id:
            links.append((checkout_id, list(product_ids), "sells"))
            if form_id:
                links.append((checkout_id, [form_id], "collects"))

        warnings = []
        for from_id, to_ids, link_type in links:
            try:
                await asyncio.to_thread(
                    self._store.link_records,
                    run.organization_id,
                    from_id,
                    to_ids,
                    link_type,
                    run.user_id,
                )
            except Exception as exc:
                logger.warning("Linking %s -> %s failed: %s", from_id, to_ids, exc)
                warnings.append(f"Could not link {from_id} ({link_type}): {exc}")
        return warnings


def _registration_fields() -> list[dict[str, Any]]:
    return [
        {"id": "first_name", "type": "text", "label": "First name", "required": True},
        {"id": "last_name", "type": "text", "label": "Last name", "required": True},
        {"id": "email", "type": "email", "label": "Email", "required": True},
    ]
