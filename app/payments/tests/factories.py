"""
Factory Boy factories for payment test data.

Usage:
    from payments.tests.factories import (
        PaymentFactory,
        ProcessorConfigurationFactory,
        RefundFactory,
    )

    config = ProcessorConfigurationFactory(is_default=True)
    payment = PaymentFactory(configuration=config, amount_cents=12500)
    payment = PaymentFactory(players=[player1, player2])
    refund = RefundFactory(payment=payment, amount_cents=2500)
"""

import factory
from django.utils import timezone

from authentication.tests.factories import UserFactory
from payments.models import Payment, ProcessorConfiguration, Refund
from payments.state_machines import (
    Currency,
    PaymentStatus,
    ProcessorEnvironment,
    ProcessorKind,
    RefundSource,
    RefundStatus,
)


class ProcessorConfigurationFactory(factory.django.DjangoModelFactory):
    """
    Active sandbox Square configuration with complete credentials.

    Examples:
        default = ProcessorConfigurationFactory(is_default=True)
        clover = ProcessorConfigurationFactory(clover=True)
    """

    class Meta:
        model = ProcessorConfiguration

    class Params:
        clover = factory.Trait(
            kind=ProcessorKind.CLOVER,
            access_token="clover-api-token",
            application_id="clover-app",
            location_id="",
            merchant_id="MERCHANT1",
        )
        stripe = factory.Trait(
            kind=ProcessorKind.STRIPE,
            access_token="sk_test_123",
            application_id="pk_test_123",
            location_id="",
        )
        paypal = factory.Trait(
            kind=ProcessorKind.PAYPAL,
            access_token="paypal-secret",
            application_id="paypal-client-id",
            location_id="",
        )

    kind = ProcessorKind.SQUARE
    name = factory.Sequence(lambda n: f"Processor {n}")
    is_active = True
    is_default = False
    environment = ProcessorEnvironment.SANDBOX
    access_token = "EAAA-sandbox-token"
    application_id = "sandbox-sq0idb-app"
    location_id = "L-SANDBOX"
    merchant_id = ""
    currency = Currency.USD


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Completed, unrefunded ledger entry of $100.00 paid by a new parent.

    Pass ``players=[...]`` to link players after creation.
    """

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    payment_id = factory.Sequence(lambda n: f"sq_pay_{n:06d}")
    processor = ProcessorKind.SQUARE
    configuration = factory.SubFactory(ProcessorConfigurationFactory)
    amount_cents = 10000
    currency = Currency.USD
    status = PaymentStatus.COMPLETED
    raw_status = "COMPLETED"
    processed_at = factory.LazyFunction(timezone.now)
    card_brand = "VISA"
    card_last4 = "4242"
    card_exp_month = 12
    card_exp_year = 2030
    parent = factory.SubFactory(UserFactory)
    buyer_email = factory.SelfAttribute("parent.email")
    metadata = factory.LazyFunction(lambda: {"season": "Spring", "year": 2025})

    @factory.post_generation
    def players(self, create, extracted, **kwargs):
        if create and extracted:
            self.players.set(extracted)


class RefundFactory(factory.django.DjangoModelFactory):
    """Pending refund request of $25.00 against a new ledger entry."""

    class Meta:
        model = Refund

    payment = factory.SubFactory(PaymentFactory)
    amount_cents = 2500
    reason = "Schedule conflict"
    status = RefundStatus.PENDING
    source = RefundSource.WEB
    requested_by = factory.SelfAttribute("payment.parent")
