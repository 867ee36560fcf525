"""HTTP middleware that runs outside API key authentication."""

from experience_mcp.middleware.request_log import RequestLogMiddleware

__all__ = ["RequestLogMiddleware"]
