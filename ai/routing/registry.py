"""Provider registry: the set of registered providers and the active slot."""
import threading
from typing import Dict, List, Optional

from ai.routing.providers import BaseProvider
from core.errors import InvalidProviderError, ProviderNotFoundError
from core.logging import logger


class ProviderRegistry:
    """Registry for providers keyed by id, in registration order."""

    def __init__(self):
        self._providers: Dict[str, BaseProvider] = {}
        self._active_id: Optional[str] = None
        self._lock = threading.RLock()

    def register(self, provider: BaseProvider) -> None:
        """
        Register a provider.

        A provider with an existing id replaces the previous one. The first
        provider registered while no provider is active becomes active.

        Raises:
            InvalidProviderError: provider is None or has an empty id
        """
        if provider is None or not getattr(provider, "provider_id", None):
            raise InvalidProviderError("Attempted to register a null provider or one with an empty id.")

        provider_id = provider.provider_id
        with self._lock:
            if provider_id in self._providers:
                logger.warning(f"Replacing already registered provider '{provider_id}'")
            else:
                logger.info(f"Registering AI provider: {provider_id}")
            self._providers[provider_id] = provider

            if self._active_id is None:
                self._active_id = provider_id
                logger.info(f"Set {provider_id} as the active provider.")

    def unregister(self, provider_id: str) -> BaseProvider:
        """
        Remove a provider and return it.

        When the removed provider was active, the first remaining provider
        becomes active, or the slot is cleared.
        """
        with self._lock:
            if provider_id not in self._providers:
                raise ProviderNotFoundError(f"Provider not found: {provider_id}")
            provider = self._providers.pop(provider_id)
            logger.info(f"Unregistered AI provider: {provider_id}")

            if self._active_id == provider_id:
                self._active_id = next(iter(self._providers), None)
                if self._active_id is None:
                    logger.info("No providers left; active provider cleared.")
                else:
                    logger.info(f"Set {self._active_id} as the active provider.")
            return provider

    def set_active(self, provider_id: str) -> None:
        with self._lock:
            if provider_id not in self._providers:
                logger.warning(f"Attempted to set unknown provider as active: {provider_id}")
                raise ProviderNotFoundError(f"Provider not found: {provider_id}")
            self._active_id = provider_id
        logger.info(f"Set {provider_id} as the active provider.")

    def get(self, provider_id: Optional[str]) -> Optional[BaseProvider]:
        with self._lock:
            return self._providers.get(provider_id) if provider_id else None

    def active_provider(self) -> Optional[BaseProvider]:
        with self._lock:
            if self._active_id is None:
                return None
            return self._providers.get(self._active_id)

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def providers(self) -> List[BaseProvider]:
        """Snapshot of registered providers in registration order."""
        with self._lock:
            return list(self._providers.values())

    def all_ids(self) -> List[str]:
        with self._lock:
            return list(self._providers.keys())

    def all_names(self) -> List[str]:
        with self._lock:
            return [p.name for p in self._providers.values()]

    def __contains__(self, provider_id: object) -> bool:
        with self._lock:
            return provider_id in self._providers

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)
