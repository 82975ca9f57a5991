"""
Admin operations on processor configurations.

ProcessorConfigurationService owns every write to ProcessorConfiguration:

- create/update enforce the per-kind credential minimum and the single
  default rule (setting is_default clears it on every other record inside
  the same transaction)
- delete and deactivation refuse to leave zero active records
- test/test_all run adapter health checks without persisting anything
- public_config exposes only what the browser SDK needs

Writes invalidate the registry's cached adapters for the record.

Usage:
    from payments.services import ProcessorConfigurationService

    config = ProcessorConfigurationService.create(
        {"kind": "square", "access_token": "EAAA...", "location_id": "L1", "is_default": True},
        user=admin,
    )
    outcome = ProcessorConfigurationService.test(config)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.db.models import F

from core.services import BaseService, ServiceResult
from payments.exceptions import ConfigurationError, PaymentNotFoundError
from payments.locks import check_version
from payments.models import ProcessorConfiguration
from payments.registry import ProcessorRegistry

if TYPE_CHECKING:
    from payments.adapters import HealthCheckResult

# Fields admins may set through create/update
EDITABLE_FIELDS = (
    "kind",
    "name",
    "is_active",
    "is_default",
    "environment",
    "access_token",
    "application_id",
    "location_id",
    "merchant_id",
    "webhook_signature_key",
    "currency",
    "tax_rate",
    "default_description",
)


class ProcessorConfigurationService(BaseService):
    """CRUD, activation and health checks for processor configurations."""

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def list_configurations(cls):
        """All configurations, default first, then most recently updated."""
        return ProcessorConfiguration.objects.order_by("-is_default", "-updated_at")

    @classmethod
    def get(cls, config_id) -> ProcessorConfiguration:
        config = ProcessorConfiguration.objects.filter(pk=config_id).first()
        if config is None:
            raise PaymentNotFoundError(
                f"Payment configuration {config_id} not found",
                error_code="NOT_FOUND",
                details={"configuration_id": str(config_id)},
            )
        return config

    @classmethod
    def public_config(cls, preferred_kind: str | None = None) -> dict[str, Any]:
        """Non-sensitive settings of the configuration new charges will use."""
        return ProcessorRegistry.resolve_active(preferred_kind).public_config()

    @classmethod
    def active_summary(cls) -> dict[str, Any]:
        """Which processor is in effect and how many records are active."""
        config = ProcessorRegistry.resolve_active()
        return {
            "id": str(config.pk),
            "processor": config.kind,
            "name": config.name,
            "environment": config.environment,
            "currency": config.currency,
            "isDefault": config.is_default,
            "activeCount": ProcessorConfiguration.objects.filter(is_active=True).count(),
        }

    # =========================================================================
    # Writes
    # =========================================================================

    @classmethod
    def create(cls, data: dict[str, Any], user=None) -> ProcessorConfiguration:
        """
        Create a configuration.

        The first configuration ever created becomes active and default.

        Raises:
            ConfigurationError: Credentials missing for the selected kind
        """
        values = {name: data[name] for name in EDITABLE_FIELDS if name in data}
        config = ProcessorConfiguration(**values, created_by=user, last_modified_by=user)
        cls._validate_credentials(config)

        with cls.atomic():
            if not ProcessorConfiguration.objects.exists():
                config.is_active = True
                config.is_default = True
            if config.is_default:
                cls._clear_other_defaults(config)
            config.save()

        cls.get_logger().info(
            "Created payment configuration",
            extra={
                "configuration_id": str(config.pk),
                "processor": config.kind,
                "is_default": config.is_default,
                "user_id": getattr(user, "pk", None),
            },
        )
        return config

    @classmethod
    def update(
        cls,
        config: ProcessorConfiguration,
        data: dict[str, Any],
        user=None,
        expected_version: int | None = None,
    ) -> ProcessorConfiguration:
        """
        Update a configuration.

        Blank credential values in ``data`` leave the stored credential
        unchanged, so admin forms never have to echo secrets back.

        Raises:
            StaleRecordError: ``expected_version`` no longer matches
            ConfigurationError: Credentials missing, or the update would
                deactivate the last active record
        """
        with cls.atomic():
            if expected_version is None:
                locked = ProcessorConfiguration.objects.select_for_update().get(pk=config.pk)
            else:
                locked = check_version(ProcessorConfiguration, config.pk, expected_version)

            was_active = locked.is_active
            for name in EDITABLE_FIELDS:
                if name not in data:
                    continue
                if name in ("access_token", "webhook_signature_key") and not data[name]:
                    continue
                setattr(locked, name, data[name])
            locked.last_modified_by = user
            cls._validate_credentials(locked)

            if not locked.is_active:
                if was_active:
                    cls._ensure_another_active(locked, "deactivate")
                locked.is_default = False
            if locked.is_default:
                cls._clear_other_defaults(locked)
            locked.save()

        ProcessorRegistry.invalidate(locked.pk)
        cls.get_logger().info(
            "Updated payment configuration",
            extra={
                "configuration_id": str(locked.pk),
                "processor": locked.kind,
                "version": locked.version,
                "user_id": getattr(user, "pk", None),
            },
        )
        return locked

    @classmethod
    def activate(cls, config: ProcessorConfiguration, user=None) -> ProcessorConfiguration:
        """Make ``config`` active and the default."""
        return cls.update(config, {"is_active": True, "is_default": True}, user=user)

    @classmethod
    def delete(cls, config: ProcessorConfiguration, user=None) -> None:
        """
        Delete a configuration.

        Ledger entries keep their history: their configuration reference is
        cleared and refunds fall back to the processor kind.

        Raises:
            ConfigurationError: ``config`` is the only active record
        """
        config_id = config.pk
        with cls.atomic():
            locked = ProcessorConfiguration.objects.select_for_update().get(pk=config_id)
            if locked.is_active:
                cls._ensure_another_active(locked, "delete")
            locked.delete()

        ProcessorRegistry.invalidate(config_id)
        cls.get_logger().info(
            "Deleted payment configuration",
            extra={
                "configuration_id": str(config_id),
                "processor": config.kind,
                "user_id": getattr(user, "pk", None),
            },
        )

    # =========================================================================
    # Health Checks
    # =========================================================================

    @classmethod
    def test(cls, config: ProcessorConfiguration) -> ServiceResult[HealthCheckResult]:
        """Run the adapter health check for ``config``. Persists nothing."""
        try:
            adapter = ProcessorRegistry.get_adapter(config)
        except ConfigurationError as e:
            return cls.handle_exception(e, f"Cannot build adapter for {config.pk}", log_level=logging.WARNING)

        outcome = adapter.health_check()
        cls.get_logger().info(
            "Payment configuration tested",
            extra={
                "configuration_id": str(config.pk),
                "processor": config.kind,
                "ok": outcome.ok,
                "duration_ms": outcome.duration_ms,
            },
        )
        if not outcome.ok:
            return ServiceResult(
                success=False,
                data=outcome,
                error=outcome.message,
                error_code="CONFIGURATION_ERROR",
            )
        return ServiceResult.success(outcome)

    @classmethod
    def test_all(cls) -> dict[str, Any]:
        """Test every active configuration. Returns {allPassed, results[]}."""
        results = []
        for config in ProcessorConfiguration.objects.filter(is_active=True).order_by("-is_default", "-updated_at"):
            result = cls.test(config)
            entry: dict[str, Any] = {
                "id": str(config.pk),
                "name": config.name,
                "processor": config.kind,
                "success": result.success,
            }
            if result.data is not None:
                entry.update(result.data.to_dict())
            else:
                entry["message"] = result.error
            results.append(entry)
        return {
            "allPassed": bool(results) and all(entry["success"] for entry in results),
            "results": results,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate_credentials(config: ProcessorConfiguration) -> None:
        missing = config.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing {config.kind} credentials: {', '.join(missing)}",
                details={"processor": config.kind, "missing": missing},
            )

    @classmethod
    def _clear_other_defaults(cls, config: ProcessorConfiguration) -> None:
        others = ProcessorConfiguration.objects.filter(is_default=True)
        if config.pk:
            others = others.exclude(pk=config.pk)
        cleared = list(others.values_list("pk", flat=True))
        if cleared:
            others.update(is_default=False, version=F("version") + 1)
            for pk in cleared:
                ProcessorRegistry.invalidate(pk)

    @staticmethod
    def _ensure_another_active(config: ProcessorConfiguration, action: str) -> None:
        others = list(
            ProcessorConfiguration.objects.select_for_update()
            .filter(is_active=True)
            .exclude(pk=config.pk)
            .values_list("pk", flat=True)
        )
        if not others:
            raise ConfigurationError(
                f"Cannot {action} the only active payment configuration",
                details={"configuration_id": str(config.pk)},
            )


__all__ = ["ProcessorConfigurationService", "EDITABLE_FIELDS"]
