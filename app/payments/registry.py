"""
Processor registry: resolves configurations and caches adapter instances.

Adapters are cached per process, keyed by ``(configuration id, version)``.
Every save of a ProcessorConfiguration bumps its version, so an updated
configuration is never served from a stale client; update and delete also
invalidate the configuration's entries explicitly.

Resolution rules:
    resolve_active(kind)     active record of ``kind``, else the default
                             active record, else any active record
    adapter_for_payment(p)   the entry's own configuration, else an active
                             configuration of the entry's processor kind,
                             else credentials from settings

Usage:
    from payments.registry import ProcessorRegistry

    config = ProcessorRegistry.resolve_active(preferred_kind="clover")
    adapter = ProcessorRegistry.get_adapter(config)

    # Tests
    ProcessorRegistry.set_adapter_factory(lambda credentials: fake_adapter)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from payments.adapters import ProcessorAdapter, ProcessorCredentials, build_adapter
from payments.exceptions import ConfigurationError
from payments.models import ProcessorConfiguration

if TYPE_CHECKING:
    from payments.models import Payment

logger = logging.getLogger(__name__)

# Cache key used for adapters built from settings credentials
ENV_CONFIGURATION_ID = "env"


class ProcessorRegistry:
    """
    Process-wide adapter cache and configuration resolver.

    All methods are classmethods; state lives on the class and is guarded by
    a lock so request threads and Celery worker threads share one cache.
    """

    _cache: dict[tuple[str, str, int], ProcessorAdapter] = {}
    _lock = threading.Lock()

    # Adapter factory - can be injected for testing
    _adapter_factory: Callable[[ProcessorCredentials], ProcessorAdapter] | None = None

    @classmethod
    def get_adapter_factory(cls) -> Callable[[ProcessorCredentials], ProcessorAdapter]:
        """Get the factory used to build adapters."""
        return cls._adapter_factory or build_adapter

    @classmethod
    def set_adapter_factory(
        cls,
        factory: Callable[[ProcessorCredentials], ProcessorAdapter] | None,
    ) -> None:
        """Set the adapter factory (for testing). Clears the cache."""
        cls._adapter_factory = factory
        cls.invalidate()

    # =========================================================================
    # Resolution
    # =========================================================================

    @classmethod
    def resolve_active(cls, preferred_kind: str | None = None) -> ProcessorConfiguration:
        """
        Return the configuration a new charge should use.

        Raises:
            ConfigurationError: No active configuration exists
        """
        active = ProcessorConfiguration.objects.filter(is_active=True)

        if preferred_kind:
            config = active.filter(kind=preferred_kind).order_by("-is_default", "-updated_at").first()
            if config:
                return config

        config = active.filter(is_default=True).first() or active.order_by("-updated_at").first()
        if config is None:
            raise ConfigurationError(
                "No active payment processor configuration",
                details={"preferred_processor": preferred_kind},
            )
        return config

    # =========================================================================
    # Adapter Cache
    # =========================================================================

    @classmethod
    def get_adapter(cls, config: ProcessorConfiguration) -> ProcessorAdapter:
        """Return the cached adapter for this configuration version."""
        key = (str(config.pk), config.kind, config.version)
        with cls._lock:
            adapter = cls._cache.get(key)
            if adapter is None:
                # Drop entries for older versions of the same configuration
                for stale in [k for k in cls._cache if k[0] == key[0]]:
                    del cls._cache[stale]
                adapter = cls.get_adapter_factory()(ProcessorCredentials.from_configuration(config))
                cls._cache[key] = adapter
                logger.info(
                    "Built processor adapter",
                    extra={
                        "configuration_id": key[0],
                        "processor": config.kind,
                        "version": config.version,
                    },
                )
        return adapter

    @classmethod
    def get_env_adapter(cls, kind: str) -> ProcessorAdapter:
        """Return the cached adapter built from settings credentials for ``kind``."""
        key = (ENV_CONFIGURATION_ID, kind, 0)
        with cls._lock:
            adapter = cls._cache.get(key)
            if adapter is None:
                adapter = cls.get_adapter_factory()(ProcessorCredentials.from_settings(kind))
                cls._cache[key] = adapter
        return adapter

    @classmethod
    def invalidate(cls, configuration_id=None) -> None:
        """Drop cached adapters for one configuration, or all of them."""
        with cls._lock:
            if configuration_id is None:
                cls._cache.clear()
                return
            for key in [k for k in cls._cache if k[0] == str(configuration_id)]:
                del cls._cache[key]

    # =========================================================================
    # Ledger Entries
    # =========================================================================

    @classmethod
    def adapter_for_payment(cls, payment: Payment) -> ProcessorAdapter:
        """
        Return the adapter that can refund or sync ``payment``.

        The entry's own configuration wins even when inactive, so a refund of
        a pre-switch charge goes back to the account that took it.

        Raises:
            ConfigurationError: The processor cannot be resolved
        """
        if payment.configuration_id:
            config = ProcessorConfiguration.objects.filter(pk=payment.configuration_id).first()
            if config is not None:
                return cls.get_adapter(config)

        fallback = (
            ProcessorConfiguration.objects.filter(kind=payment.processor, is_active=True)
            .order_by("-is_default", "-updated_at")
            .first()
        )
        if fallback is not None:
            logger.warning(
                "Configuration for payment missing, using active configuration of same kind",
                extra={
                    "payment_id": payment.payment_id,
                    "processor": payment.processor,
                    "configuration_id": str(fallback.pk),
                },
            )
            return cls.get_adapter(fallback)

        try:
            adapter = cls.get_env_adapter(payment.processor)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"No {payment.processor} configuration available for payment {payment.payment_id}",
                details={"processor": payment.processor, **e.details},
            ) from e

        logger.warning(
            "Configuration for payment missing, using environment credentials",
            extra={"payment_id": payment.payment_id, "processor": payment.processor},
        )
        return adapter


__all__ = ["ProcessorRegistry", "ENV_CONFIGURATION_ID"]
