"""Provider interface consumed by the routing layer.

Concrete vendor adapters live outside this package; they subclass
``BaseProvider`` and translate a generic ``Request`` into their own call.
"""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from ai.routing.types import Capability, Request, Response, capability_tag


class BaseProvider(ABC):
    """Base class for AI providers."""

    def __init__(
        self,
        provider_id: str,
        capabilities: Iterable[Capability] = (),
        name: Optional[str] = None,
        supports_streaming: bool = False,
        version: str = "",
    ):
        self.provider_id = provider_id
        self.name = name or provider_id
        self.capabilities: FrozenSet[str] = frozenset(capability_tag(c) for c in capabilities)
        self.supports_streaming = supports_streaming
        self.version = version
        self._config: Dict[str, str] = {}

    def supports(self, capability: Capability) -> bool:
        return capability_tag(capability) in self.capabilities

    @abstractmethod
    async def process(self, request: Request) -> Response:
        """Process a request. May return a failed ``Response`` or raise."""
        pass

    def configure(self, config: Mapping[str, str]) -> None:
        """Merge plain key-value settings into the provider configuration."""
        self._config.update(config)

    def get_configuration(self) -> Dict[str, str]:
        return dict(self._config)

    def __repr__(self) -> str:
        caps = ",".join(sorted(self.capabilities))
        return f"{type(self).__name__}(id={self.provider_id!r}, capabilities=[{caps}])"


class FunctionProvider(BaseProvider):
    """Provider backed by an async callable ``handler(request) -> Response | str``.

    Handy for wiring an existing client coroutine into the registry without
    writing a subclass.
    """

    def __init__(
        self,
        provider_id: str,
        handler: Callable[[Request], Awaitable[object]],
        capabilities: Iterable[Capability] = (),
        **kwargs,
    ):
        super().__init__(provider_id, capabilities, **kwargs)
        self._handler = handler

    async def process(self, request: Request) -> Response:
        result = await self._handler(request)
        if isinstance(result, Response):
            return result
        return Response.ok(str(result), provider_id=self.provider_id)
