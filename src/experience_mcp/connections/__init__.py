from experience_mcp.connections.executor import ConnectionExecutor, parse_decisions
from experience_mcp.connections.models import Decision, PlannedItem

__all__ = ["ConnectionExecutor", "Decision", "PlannedItem", "parse_decisions"]
