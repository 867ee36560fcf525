from experience_mcp.work_items.tracker import WorkItemTracker

__all__ = ["WorkItemTracker"]
