"""
Charge orchestrator: the only path that creates ledger entries.

ChargeService.charge() runs the charge in a fixed order:

    1. Validate input (amount, email, parent, player ownership)
    2. Resolve the active configuration and its cached adapter
    3. Call the processor with an idempotency key (no local writes yet)
    4. In one transaction: insert the Payment, link players, and mark the
       parent, players, season entries and registrations paid
    5. After commit, queue the receipt email

A processor failure in step 3 leaves no local rows. A failure in step 4
after the processor charged surfaces as INDETERMINATE; the caller may retry
with the same idempotency key, and the processor's replay (or its
idempotency collision error) lets the retry finish persistence without a
second charge.

Usage:
    from payments.services import ChargeInput, ChargeService

    outcome = ChargeService.charge(
        ChargeInput(
            source_token="cnon:card-nonce-ok",
            amount_cents=12500,
            buyer_email="a@b.com",
            parent_id=parent.pk,
            player_ids=[player.pk],
            season="Spring",
            year=2025,
        )
    )
    outcome.payment.amount  # Decimal("125.00")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import DatabaseError, IntegrityError, transaction

from core.services import BaseService
from payments.adapters import CardFingerprint, ChargeRequest, ChargeResult, IdempotencyKeyGenerator
from payments.exceptions import (
    DuplicateChargeError,
    IndeterminateOutcomeError,
    PaymentValidationError,
    ProcessorDeclinedError,
)
from payments.models import Payment
from payments.registry import ProcessorRegistry
from payments.state_machines import PaymentStatus
from registrations.models import Player
from registrations.services import DomainUpdateSummary, PaymentStatusService

if TYPE_CHECKING:
    from payments.adapters import ProcessorAdapter
    from payments.models import ProcessorConfiguration

logger = logging.getLogger(__name__)


# =============================================================================
# Parameter Types
# =============================================================================


@dataclass
class ChargeInput:
    """
    Input for a single charge.

    Attributes:
        source_token: Opaque token from the processor's browser SDK
        amount_cents: Amount in smallest currency unit (must be positive)
        buyer_email: Receipt address
        parent_id: Paying parent account
        player_ids: Players covered by the charge (must belong to parent_id)
        season: Season label for the players' new season entries
        year: Season year
        tryout_id: Tryout the charge is for, if any
        currency: Charge currency (defaults to the configuration's currency)
        card: Card fingerprint reported by the browser SDK
        description: Note attached to the processor payment
        metadata: Extra values stored on the ledger entry (tournament, team ids)
        preferred_processor: Processor kind to charge through, if active
        idempotency_key: Key to reuse when retrying the same charge
    """

    source_token: str
    amount_cents: int
    buyer_email: str
    parent_id: Any
    player_ids: list[Any] = field(default_factory=list)
    season: str = ""
    year: int | None = None
    tryout_id: str = ""
    currency: str | None = None
    card: CardFingerprint | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    preferred_processor: str | None = None
    idempotency_key: str | None = None


@dataclass
class ChargeOutcome:
    """
    Result of a charge.

    Attributes:
        payment: The persisted ledger entry
        summary: Linked records marked paid (empty for a replayed charge)
        replayed: True when the ledger entry already existed for this
            processor payment and no new rows were written
    """

    payment: Payment
    summary: DomainUpdateSummary = field(default_factory=DomainUpdateSummary)
    replayed: bool = False


# =============================================================================
# Charge Service
# =============================================================================


class ChargeService(BaseService):
    """Charge a source token and write the ledger entry atomically with domain flags."""

    @classmethod
    def charge(cls, charge_input: ChargeInput) -> ChargeOutcome:
        """
        Charge through the active processor and persist the result.

        Raises:
            PaymentValidationError: Input failed its preconditions
            ConfigurationError: No active processor configuration
            ProcessorDeclinedError: The processor rejected the source or did
                not complete the charge
            ProcessorError: Any other mapped processor failure
            IndeterminateOutcomeError: Charged remotely but not persisted
        """
        log = cls.get_logger()
        start_time = time.time()

        parent, players = cls._validate(charge_input)
        config = ProcessorRegistry.resolve_active(charge_input.preferred_processor)
        adapter = ProcessorRegistry.get_adapter(config)
        currency = (charge_input.currency or config.currency).upper()
        idempotency_key = charge_input.idempotency_key or IdempotencyKeyGenerator.generate("charge")

        log_context = {
            "parent_id": str(parent.pk),
            "processor": config.kind,
            "configuration_id": str(config.pk),
            "amount_cents": charge_input.amount_cents,
            "currency": currency,
            "player_count": len(players),
        }
        log.info("Starting charge", extra=log_context)

        request = ChargeRequest(
            source_token=charge_input.source_token,
            amount_cents=charge_input.amount_cents,
            currency=currency,
            buyer_email=charge_input.buyer_email,
            idempotency_key=idempotency_key,
            buyer_reference=str(parent.pk),
            note=charge_input.description or config.default_description,
            metadata={
                "parent_id": str(parent.pk),
                "player_count": str(len(players)),
                "season": charge_input.season,
                "year": str(charge_input.year or ""),
            },
        )
        result = cls._submit(adapter, request, log_context)

        if not result.succeeded:
            log.warning(
                "Charge not completed by processor",
                extra={**log_context, "raw_status": result.raw_status, "external_id": result.external_id},
            )
            raise ProcessorDeclinedError(
                f"Charge was not completed (processor status {result.raw_status})",
                processor=config.kind,
                processor_code=result.raw_status,
                details={"raw_status": result.raw_status},
            )

        existing = Payment.objects.filter(payment_id=result.external_id).first()
        if existing is not None:
            log.info(
                "Charge replayed an existing ledger entry",
                extra={**log_context, "payment_id": existing.payment_id},
            )
            return ChargeOutcome(payment=existing, replayed=True)

        try:
            payment, summary = cls._persist(charge_input, config, result, parent, players)
        except IntegrityError:
            existing = Payment.objects.filter(payment_id=result.external_id).first()
            if existing is not None:
                return ChargeOutcome(payment=existing, replayed=True)
            raise cls._indeterminate(result, config, log_context)
        except DatabaseError:
            raise cls._indeterminate(result, config, log_context)

        transaction.on_commit(lambda: cls._queue_receipt(payment))

        duration_ms = (time.time() - start_time) * 1000
        log.info(
            "Charge completed",
            extra={
                **log_context,
                "payment_id": payment.payment_id,
                "ledger_id": str(payment.pk),
                "players_updated": summary.players_updated,
                "registrations_updated": summary.registrations_updated,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return ChargeOutcome(payment=payment, summary=summary)

    # =========================================================================
    # Steps
    # =========================================================================

    @classmethod
    def _validate(cls, charge_input: ChargeInput):
        """Check every precondition that needs no processor call."""
        validation = cls.validate_required(
            source_token=charge_input.source_token,
            buyer_email=charge_input.buyer_email,
            parent_id=charge_input.parent_id,
        )
        if validation is not None:
            raise PaymentValidationError(
                "Required fields missing",
                details={"errors": validation.errors},
            )

        amount = charge_input.amount_cents
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise PaymentValidationError(
                "Amount must be a positive number of minor units",
                details={"amount": amount},
            )

        try:
            validate_email(charge_input.buyer_email)
        except DjangoValidationError:
            raise PaymentValidationError(
                "Buyer email is not a valid address",
                details={"buyer_email": charge_input.buyer_email},
            )

        parent = get_user_model().objects.filter(pk=charge_input.parent_id).first()
        if parent is None:
            raise PaymentValidationError(
                f"Parent {charge_input.parent_id} not found",
                details={"parent_id": str(charge_input.parent_id)},
            )

        player_ids = list(dict.fromkeys(charge_input.player_ids or []))
        players = list(Player.objects.filter(pk__in=player_ids)) if player_ids else []
        found = {str(player.pk) for player in players}
        missing = [str(pk) for pk in player_ids if str(pk) not in found]
        foreign = [str(player.pk) for player in players if player.parent_id != parent.pk]
        if missing or foreign:
            raise PaymentValidationError(
                "Players must exist and belong to the paying parent",
                details={"missing_players": missing, "foreign_players": foreign},
            )

        return parent, players

    @classmethod
    def _submit(
        cls,
        adapter: ProcessorAdapter,
        request: ChargeRequest,
        log_context: dict[str, Any],
    ) -> ChargeResult:
        """
        Call the processor.

        An idempotency collision that names the original payment is resolved
        by reading that payment back, so a retried charge finishes the local
        write instead of failing.
        """
        try:
            return adapter.charge(request)
        except DuplicateChargeError as e:
            if not e.existing_external_id:
                raise
            cls.get_logger().warning(
                "Idempotency collision, reusing original processor payment",
                extra={**log_context, "external_id": e.existing_external_id},
            )
            view = adapter.fetch_payment(e.existing_external_id)
            return ChargeResult(
                external_id=view.external_id,
                status=view.status,
                raw_status=view.raw_status,
                amount_cents=view.amount_cents,
                currency=view.currency,
                order_id=view.order_id,
                receipt_url=view.receipt_url,
                card=view.card,
                processed_at=view.created_at,
            )

    @classmethod
    def _persist(
        cls,
        charge_input: ChargeInput,
        config: ProcessorConfiguration,
        result: ChargeResult,
        parent,
        players: list[Player],
    ) -> tuple[Payment, DomainUpdateSummary]:
        """Insert the ledger entry and mark linked records paid in one transaction."""
        card = result.card or charge_input.card or CardFingerprint()
        metadata = {
            **charge_input.metadata,
            "player_count": len(players),
            "season": charge_input.season,
            "year": charge_input.year,
            "tryout_id": charge_input.tryout_id,
        }
        if charge_input.description:
            metadata["description"] = charge_input.description

        with cls.atomic():
            payment = Payment.objects.create(
                payment_id=result.external_id,
                order_id=result.order_id,
                processor=config.kind,
                configuration=config,
                amount_cents=result.amount_cents or charge_input.amount_cents,
                currency=(result.currency or config.currency).upper(),
                status=PaymentStatus.COMPLETED,
                raw_status=result.raw_status,
                receipt_url=result.receipt_url,
                processed_at=result.processed_at,
                card_brand=card.brand or "",
                card_last4=(card.last4 or "")[-4:],
                card_exp_month=card.exp_month,
                card_exp_year=card.exp_year,
                buyer_email=charge_input.buyer_email,
                parent=parent,
                metadata=metadata,
            )
            if players:
                payment.players.set(players)
            summary = PaymentStatusService.mark_paid(
                payment=payment,
                players=players,
                season=charge_input.season,
                year=charge_input.year,
                tryout_id=charge_input.tryout_id,
                paid_at=payment.created_at,
            )
        return payment, summary

    @classmethod
    def _indeterminate(
        cls,
        result: ChargeResult,
        config: ProcessorConfiguration,
        log_context: dict[str, Any],
    ) -> IndeterminateOutcomeError:
        cls.get_logger().error(
            "Processor charged but ledger entry was not persisted",
            extra={**log_context, "external_id": result.external_id},
            exc_info=True,
        )
        return IndeterminateOutcomeError(
            "Payment was charged but could not be recorded; contact support",
            processor=config.kind,
            details={"external_id": result.external_id},
        )

    @staticmethod
    def _queue_receipt(payment: Payment) -> None:
        from payments.tasks import send_payment_receipt_email

        try:
            send_payment_receipt_email.delay(str(payment.pk))
        except Exception:
            logger.exception(
                "Failed to queue payment receipt email",
                extra={"payment_id": payment.payment_id},
            )


__all__ = ["ChargeInput", "ChargeOutcome", "ChargeService"]
