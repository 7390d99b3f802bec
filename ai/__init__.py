"""AI module for provider routing and response caching."""

from ai.routing import Request, RequestOrchestrator, Response

__all__ = ["Request", "RequestOrchestrator", "Response"]
