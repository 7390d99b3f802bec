"""Fallback across a fixed, ordered list of providers."""
import asyncio
from typing import Dict, List, Optional, Sequence

from ai.routing.orchestrator import RequestOrchestrator
from ai.routing.router import CircuitBreaker
from ai.routing.types import Request, Response
from core.config import Config
from core.errors import ConfigError, ErrorKind
from core.logging import logger


class FallbackDispatcher:
    """Try each provider in order until one succeeds.

    Every attempt is a full ``dispatch_with_provider`` call, so the cache is
    consulted per attempt and keyed only by request content.  With
    ``failure_threshold`` set, providers whose circuit is open are skipped.
    """

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        provider_ids: Sequence[str],
        failure_threshold: Optional[int] = None,
        reset_timeout: float = 30,
    ):
        if not provider_ids:
            raise ValueError("FallbackDispatcher needs at least one provider id")
        self._orchestrator = orchestrator
        self._provider_ids: List[str] = list(provider_ids)
        self._breakers: Dict[str, CircuitBreaker] = {}
        if failure_threshold is not None:
            self._breakers = {
                pid: CircuitBreaker(failure_threshold, reset_timeout) for pid in self._provider_ids
            }

    @classmethod
    def from_settings(
        cls, orchestrator: RequestOrchestrator, settings: Config, **kwargs
    ) -> "FallbackDispatcher":
        """Build a dispatcher over the configured ``fallback_order``."""
        order = settings.routing.fallback_order
        if not order:
            raise ConfigError("Routing configuration has no fallback_order")
        return cls(orchestrator, order, **kwargs)

    @property
    def provider_ids(self) -> List[str]:
        return list(self._provider_ids)

    def breaker(self, provider_id: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(provider_id)

    async def dispatch(self, request: Request) -> Response:
        errors: List[str] = []
        last: Optional[Response] = None

        for pid in self._provider_ids:
            breaker = self._breakers.get(pid)
            if breaker is not None and not await breaker.before_request():
                logger.info(f"Skipping {pid}: circuit open")
                errors.append(f"{pid}: circuit open")
                continue

            try:
                response = await self._orchestrator.dispatch_with_provider(pid, request)
            except asyncio.CancelledError:
                if breaker is not None:
                    breaker.release()
                raise
            if breaker is not None:
                await self._record(breaker, response)
            if response.success:
                return response

            logger.warning(f"Fallback attempt with {pid} failed: {response.error_message}")
            errors.append(f"{pid}: {response.error_message}")
            last = response

        kind = last.error_kind if last is not None else ErrorKind.PROVIDER_CALL_FAILED
        return Response.failure(kind, "All fallback attempts failed: " + "; ".join(errors))

    @staticmethod
    async def _record(breaker: CircuitBreaker, response: Response) -> None:
        # cache hits and routing errors say nothing about provider health
        if response.success and not response.cached:
            await breaker.after_success()
        elif response.error_kind == ErrorKind.PROVIDER_CALL_FAILED:
            await breaker.after_failure()
        else:
            breaker.release()
