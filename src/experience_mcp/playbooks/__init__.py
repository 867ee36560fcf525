from experience_mcp.playbooks.drafts import DerivationResult, ExperienceDraft
from experience_mcp.playbooks.normalizer import derive_event_draft, normalize_price
from experience_mcp.playbooks.runtime import OrchestrationRuntime, RunOptions

__all__ = [
    "DerivationResult",
    "ExperienceDraft",
    "OrchestrationRuntime",
    "RunOptions",
    "derive_event_draft",
    "normalize_price",
]
