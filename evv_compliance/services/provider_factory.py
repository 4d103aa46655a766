# provider_factory.py
import logging
import threading

from ..exceptions import StateNotSupported
from ..state_rules import get_default_catalog
from .state_providers import STATE_PROVIDERS

logger = logging.getLogger(__name__)


class StateProviderFactory:
    """
    Resolves a state code to its aggregator provider.

    Providers are either registered up front (tests, custom deployments) or
    built on first use from the rule catalog and EVV_AGGREGATORS settings.
    """

    def __init__(self, catalog=None, provider_classes=None, providers=None):
        self.catalog = catalog or get_default_catalog()
        self.provider_classes = dict(STATE_PROVIDERS if provider_classes is None else provider_classes)
        self._providers = dict(providers or {})
        self._lock = threading.Lock()

    def register(self, state, provider):
        self._providers[state] = provider

    def is_supported(self, state):
        return state in self._providers or (
            state in self.provider_classes and self.catalog.is_supported(state)
        )

    def supported_states(self):
        return sorted(state for state in set(self._providers) | set(self.provider_classes)
                      if self.is_supported(state))

    def get_provider(self, state):
        provider = self._providers.get(state)
        if provider is not None:
            return provider

        if not self.is_supported(state):
            raise StateNotSupported(state, "no EVV aggregator provider registered")

        with self._lock:
            provider = self._providers.get(state)
            if provider is None:
                provider = self.provider_classes[state](self.catalog.get(state))
                self._providers[state] = provider
                logger.info(f"Initialized {provider!r}")
        return provider
