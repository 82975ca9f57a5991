"""
End-to-end payment journeys through the API.

Each test drives the public endpoints the way the club site does and checks
the ledger, the processor calls and the registration flags together.
"""

from unittest.mock import patch

import pytest
from django.urls import reverse
from rest_framework import status

from payments.exceptions import ProcessorDeclinedError
from payments.models import Payment, ProcessorConfiguration, Refund
from payments.state_machines import RefundAggregateStatus, RefundSource, RefundStatus
from payments.tests.factories import ProcessorConfigurationFactory
from registrations.models import Player, PlayerPaymentStatus, PlayerSeason, Registration


def charge_body(parent, players, **overrides):
    body = {
        "sourceToken": "cnon:card-nonce-ok",
        "amount": 12500,
        "parentId": parent.pk,
        "playerIds": [str(player.pk) for player in players],
        "season": "Spring",
        "year": 2025,
        "buyerEmail": parent.email,
    }
    body.update(overrides)
    return body


@pytest.mark.django_db
class TestChargeAndRefundJourney:
    """Charge, partial refund, final refund and the registration flags."""

    def test_full_lifecycle(
        self,
        parent_client,
        admin_api_client,
        parent,
        players,
        registrations,
        square_config,
        fake_adapter,
        mailoutbox,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            response = parent_client.post(reverse("payments:charge"), charge_body(parent, players), format="json")
        assert response.status_code == status.HTTP_201_CREATED
        external_id = response.data["payment"]["externalId"]

        parent.refresh_from_db()
        assert parent.payment_complete is True
        assert all(player.payment_complete for player in Player.objects.filter(parent=parent))
        assert Registration.objects.filter(payment__payment_id=external_id, payment_complete=True).count() == 2
        assert [message.to for message in mailoutbox] == [[parent.email]]

        # Parent asks for part of the money back
        response = parent_client.post(
            reverse("payments:refund-request"),
            {"paymentId": external_id, "amount": 2500, "reason": "Missed first week"},
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        first_refund_id = response.data["refund"]["id"]

        eligibility = parent_client.get(reverse("payments:refund-eligibility", kwargs={"payment_ref": external_id}))
        assert eligibility.data["pendingAmount"] == 2500

        with django_capture_on_commit_callbacks(execute=True):
            response = admin_api_client.post(
                reverse("payments:refund-process"),
                {"paymentId": external_id, "refundId": first_refund_id, "action": "approve"},
                format="json",
            )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["payment"]["refundStatus"] == RefundAggregateStatus.PARTIAL
        assert response.data["payment"]["refundedAmount"] == 2500
        parent.refresh_from_db()
        assert parent.payment_complete is True
        assert len(mailoutbox) == 2

        # Admin refunds the rest
        response = admin_api_client.post(
            reverse("payments:refund-request"),
            {"paymentId": external_id, "amount": 10000, "reason": "Season cancelled"},
            format="json",
        )
        assert response.data["refund"]["source"] == RefundSource.ADMIN_DASHBOARD
        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": external_id, "refundId": response.data["refund"]["id"], "action": "approve"},
            format="json",
        )
        assert response.data["payment"]["refundStatus"] == RefundAggregateStatus.FULL
        assert response.data["payment"]["status"] == "refunded"
        assert response.data["playersUpdated"] == 2

        parent.refresh_from_db()
        assert parent.payment_complete is False
        assert set(Player.objects.filter(parent=parent).values_list("payment_status", flat=True)) == {
            PlayerPaymentStatus.REFUNDED
        }
        assert not PlayerSeason.objects.filter(payment__payment_id=external_id, payment_complete=True).exists()
        assert [call["amount_cents"] for call in fake_adapter.refund_calls] == [2500, 10000]

        # Nothing left to refund
        response = parent_client.post(
            reverse("payments:refund-request"),
            {"paymentId": external_id, "amount": 100},
            format="json",
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error"]["code"] == "ALREADY_REFUNDED"

    def test_declined_charge_leaves_no_trace(self, parent_client, parent, players, square_config, fake_adapter):
        fake_adapter.charge_error = ProcessorDeclinedError("Card declined", processor="square")

        response = parent_client.post(reverse("payments:charge"), charge_body(parent, players), format="json")

        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert not Payment.objects.exists()
        parent.refresh_from_db()
        assert parent.payment_complete is False


@pytest.mark.django_db
class TestDashboardRefundJourney:
    """Refunds issued in the processor dashboard reach the ledger through sync."""

    def test_sync_imports_once(self, parent_client, admin_api_client, parent, players, square_config, fake_adapter):
        response = parent_client.post(reverse("payments:charge"), charge_body(parent, players), format="json")
        external_id = response.data["payment"]["externalId"]
        fake_adapter.add_remote_refund(external_id, 4000, reason="Dashboard goodwill")

        first = admin_api_client.post(reverse("payments:sync-refunds"))
        second = admin_api_client.post(reverse("payments:sync-refunds"))

        assert first.data["refundsAdded"] == 1
        assert second.data["refundsAdded"] == 0
        refund = Refund.objects.get(payment__payment_id=external_id)
        assert refund.source == RefundSource.PROCESSOR_DASHBOARD
        assert refund.status == RefundStatus.COMPLETED
        assert refund.amount_cents == 4000

        detail = admin_api_client.get(reverse("payments:payment-detail", kwargs={"payment_ref": external_id}))
        assert detail.data["refundedAmount"] == 4000
        assert detail.data["refundStatus"] == RefundAggregateStatus.PARTIAL

        # The remaining balance is still refundable through the site
        eligibility = admin_api_client.get(reverse("payments:refund-eligibility", kwargs={"payment_ref": external_id}))
        assert eligibility.data["availableAmount"] == 8500
        assert eligibility.data["canRefund"] is True


@pytest.mark.django_db
class TestProcessorSwitchJourney:
    """Old payments stay bound to the configuration that charged them."""

    def test_refund_after_switch(
        self, parent_client, admin_api_client, parent, players, square_config, clover_config, fake_adapter
    ):
        old = parent_client.post(reverse("payments:charge"), charge_body(parent, players), format="json")
        old_payment = Payment.objects.get(payment_id=old.data["payment"]["externalId"])
        assert old_payment.configuration_id == square_config.pk

        response = admin_api_client.post(reverse("payments:config-activate", kwargs={"pk": clover_config.pk}))
        assert response.data["isDefault"] is True

        new = parent_client.post(
            reverse("payments:charge"),
            charge_body(parent, players, idempotencyKey="after-switch"),
            format="json",
        )
        new_payment = Payment.objects.get(payment_id=new.data["payment"]["externalId"])
        assert new_payment.configuration_id == clover_config.pk
        assert new_payment.processor == "clover"

        refund = Refund.objects.create(payment=old_payment, amount_cents=1000, requested_by=parent)
        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": str(old_payment.pk), "refundId": str(refund.pk), "action": "approve"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert fake_adapter.refund_calls[-1]["payment_id"] == old_payment.payment_id
        built_for = {credentials.configuration_id for credentials in fake_adapter.built_with}
        assert built_for == {str(square_config.pk), str(clover_config.pk)}

    def test_refund_after_configuration_deleted(
        self, admin_api_client, parent, players, square_config, clover_config, fake_adapter, payment
    ):
        replacement = ProcessorConfigurationFactory(name="Replacement Square")
        admin_api_client.post(reverse("payments:config-activate", kwargs={"pk": replacement.pk}))
        response = admin_api_client.delete(reverse("payments:config-detail", kwargs={"pk": square_config.pk}))
        assert response.status_code == status.HTTP_204_NO_CONTENT

        payment.refresh_from_db()
        assert payment.configuration_id is None
        refund = Refund.objects.create(payment=payment, amount_cents=1000, requested_by=parent)

        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert fake_adapter.built_with[-1].kind == "square"


@pytest.mark.django_db
class TestConcurrentProcessing:
    """A refund record is executed at the processor at most once."""

    def test_second_approval_rejected(self, admin_api_client, payment, fake_adapter):
        refund = Refund.objects.create(payment=payment, amount_cents=5000, requested_by=payment.parent)
        body = {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"}

        first = admin_api_client.post(reverse("payments:refund-process"), body, format="json")
        second = admin_api_client.post(reverse("payments:refund-process"), body, format="json")
        reject = admin_api_client.post(
            reverse("payments:refund-process"), {**body, "action": "reject"}, format="json"
        )

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_409_CONFLICT
        assert second.data["error"]["code"] == "ALREADY_PROCESSED"
        assert reject.status_code == status.HTTP_409_CONFLICT
        assert len(fake_adapter.refund_calls) == 1

    def test_concurrent_holder_blocks_approval(self, admin_api_client, payment, fake_adapter, mock_redis):
        refund = Refund.objects.create(payment=payment, amount_cents=5000, requested_by=payment.parent)
        mock_redis.set.return_value = False

        with patch("payments.services.refund_service.REFUND_LOCK_TIMEOUT", 0.1):
            response = admin_api_client.post(
                reverse("payments:refund-process"),
                {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"},
                format="json",
            )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert fake_adapter.refund_calls == []
        assert Refund.objects.get(pk=refund.pk).status == RefundStatus.PENDING

    def test_replayed_charge_creates_one_entry(self, parent_client, parent, players, square_config, fake_adapter):
        body = charge_body(parent, players, idempotencyKey="double-click")

        first = parent_client.post(reverse("payments:charge"), body, format="json")
        second = parent_client.post(reverse("payments:charge"), body, format="json")

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_200_OK
        assert first.data["payment"]["id"] == second.data["payment"]["id"]
        assert Payment.objects.count() == 1
        assert PlayerSeason.objects.count() == 2


@pytest.mark.django_db
class TestConfigurationJourney:
    """Admins rotate processor configurations without breaking checkout."""

    def test_lifecycle(self, admin_api_client, api_client, fake_adapter):
        created = admin_api_client.post(
            reverse("payments:config-list"),
            {
                "kind": "square",
                "name": "Main",
                "accessToken": "EAAA-token",
                "applicationId": "sq0idp-app",
                "locationId": "L-MAIN",
            },
            format="json",
        )
        assert created.status_code == status.HTTP_201_CREATED
        assert created.data["isActive"] is True
        assert created.data["isDefault"] is True

        frontend = api_client.get(reverse("payments:config-frontend"))
        assert frontend.data["locationId"] == "L-MAIN"
        assert "accessToken" not in frontend.data

        updated = admin_api_client.put(
            reverse("payments:config-detail", kwargs={"pk": created.data["id"]}),
            {"locationId": "L-NEW", "expectedVersion": created.data["version"]},
            format="json",
        )
        assert updated.status_code == status.HTTP_200_OK
        assert updated.data["version"] == created.data["version"] + 1

        stale = admin_api_client.put(
            reverse("payments:config-detail", kwargs={"pk": created.data["id"]}),
            {"locationId": "L-OTHER", "expectedVersion": created.data["version"]},
            format="json",
        )
        assert stale.status_code == status.HTTP_409_CONFLICT

        health = admin_api_client.post(reverse("payments:config-test", kwargs={"pk": created.data["id"]}))
        assert health.data["success"] is True

        assert api_client.get(reverse("payments:config-frontend")).data["locationId"] == "L-NEW"
        assert ProcessorConfiguration.objects.get(pk=created.data["id"]).access_token == "EAAA-token"
