"""
Tests for the payments API views.

Responses are checked for status codes, the error envelope
({"success": false, "error": {"code", "message"}}) and role filtering.
"""

import uuid

import pytest
from django.urls import reverse
from rest_framework import status

from payments.exceptions import ProcessorDeclinedError
from payments.models import Payment, ProcessorConfiguration, Refund
from payments.state_machines import RefundSource, RefundStatus
from payments.tests.factories import PaymentFactory, ProcessorConfigurationFactory, RefundFactory
from registrations.tests.factories import PlayerFactory


def error_code(response):
    return response.data["error"]["code"]


# =============================================================================
# Charges
# =============================================================================


@pytest.mark.django_db
class TestChargeView:
    @property
    def url(self):
        return reverse("payments:charge")

    def body(self, parent, players, **overrides):
        data = {
            "sourceToken": "cnon:card-nonce-ok",
            "amount": 12500,
            "parentId": parent.pk,
            "playerIds": [str(player.pk) for player in players],
            "season": "Spring",
            "year": 2025,
            "buyerEmail": parent.email,
            "cardDetails": {"last_4": "1111", "card_brand": "VISA", "exp_month": 12, "exp_year": 2030},
        }
        data.update(overrides)
        return data

    def test_charge_created(self, parent_client, parent, players, registrations, square_config, fake_adapter):
        response = parent_client.post(self.url, self.body(parent, players), format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["success"] is True
        payment = response.data["payment"]
        assert payment["externalId"] == "square_pay_fake_1"
        assert payment["amount"] == 12500
        assert payment["status"] == "completed"
        assert payment["playersUpdated"] == 2
        assert payment["parentUpdated"] is True
        assert payment["replayed"] is False
        assert Payment.objects.filter(payment_id="square_pay_fake_1").exists()

    def test_replay_answers_200(self, parent_client, parent, players, square_config, fake_adapter):
        body = self.body(parent, players, idempotencyKey="charge_same")
        parent_client.post(self.url, body, format="json")

        response = parent_client.post(self.url, body, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["payment"]["replayed"] is True
        assert Payment.objects.count() == 1

    def test_admin_may_charge_for_parent(self, admin_api_client, parent, players, square_config, fake_adapter):
        response = admin_api_client.post(self.url, self.body(parent, players), format="json")

        assert response.status_code == status.HTTP_201_CREATED

    def test_parent_cannot_charge_for_other_parent(
        self, parent_client, other_parent, square_config, fake_adapter
    ):
        response = parent_client.post(self.url, self.body(other_parent, []), format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert error_code(response) == "UNAUTHORIZED"
        assert fake_adapter.charge_calls == []

    def test_invalid_body(self, parent_client, parent, players, square_config, fake_adapter):
        response = parent_client.post(self.url, self.body(parent, players, amount=0), format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["success"] is False
        assert error_code(response) == "VALIDATION"
        assert "amount" in response.data["error"]["details"]

    def test_foreign_player(self, parent_client, parent, players, square_config, fake_adapter):
        body = self.body(parent, [*players, PlayerFactory()])

        response = parent_client.post(self.url, body, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "VALIDATION"

    def test_declined(self, parent_client, parent, players, square_config, fake_adapter):
        fake_adapter.charge_error = ProcessorDeclinedError(
            "Insufficient funds", processor="square", reason="insufficient_funds"
        )

        response = parent_client.post(self.url, self.body(parent, players), format="json")

        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert error_code(response) == "PROCESSOR_DECLINED"
        assert response.data["error"]["message"] == "Insufficient funds"
        assert "details" not in response.data["error"]

    def test_no_configuration(self, parent_client, parent, players, fake_adapter):
        response = parent_client.post(self.url, self.body(parent, players), format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "CONFIGURATION_ERROR"

    def test_unauthenticated(self, api_client, parent, players):
        response = api_client.post(self.url, self.body(parent, players), format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert error_code(response) == "UNAUTHORIZED"


# =============================================================================
# Ledger Reads
# =============================================================================


@pytest.mark.django_db
class TestPaymentReads:
    def test_parent_detail_hides_processor_fields(self, parent_client, payment):
        url = reverse("payments:payment-detail", kwargs={"payment_ref": payment.payment_id})

        response = parent_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["amount"] == 10000
        assert "paymentId" not in response.data
        assert "cardDetails" not in response.data
        assert "buyerEmail" not in response.data

    def test_parent_detail_hides_processor_refund_ids(self, parent_client, payment):
        """Should list the parent's refunds without processor refund ids."""
        RefundFactory(
            payment=payment,
            status=RefundStatus.COMPLETED,
            external_refund_id="sq_ref_hidden_1",
        )
        url = reverse("payments:payment-detail", kwargs={"payment_ref": payment.payment_id})

        response = parent_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data["refunds"]) == 1
        assert "refundId" not in response.data["refunds"][0]
        assert "sq_ref_hidden_1" not in str(response.data)

    def test_admin_detail_shows_processor_refund_ids(self, admin_api_client, payment):
        RefundFactory(
            payment=payment,
            status=RefundStatus.COMPLETED,
            external_refund_id="sq_ref_visible_1",
        )
        url = reverse("payments:payment-detail", kwargs={"payment_ref": payment.payment_id})

        response = admin_api_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refunds"][0]["refundId"] == "sq_ref_visible_1"

    def test_admin_detail_full(self, admin_api_client, payment):
        url = reverse("payments:payment-detail", kwargs={"payment_ref": str(payment.pk)})

        response = admin_api_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["paymentId"] == payment.payment_id
        assert response.data["cardDetails"]["last_4"] == "4242"
        assert response.data["parentId"] == payment.parent_id

    def test_other_parent_forbidden(self, api_client, other_parent, payment):
        api_client.force_authenticate(user=other_parent)
        url = reverse("payments:payment-detail", kwargs={"payment_ref": payment.payment_id})

        response = api_client.get(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert error_code(response) == "UNAUTHORIZED"

    def test_unknown_payment(self, parent_client):
        url = reverse("payments:payment-detail", kwargs={"payment_ref": "sq_pay_missing"})

        response = parent_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert error_code(response) == "PAYMENT_NOT_FOUND"

    def test_refund_eligibility(self, parent_client, payment):
        url = reverse("payments:refund-eligibility", kwargs={"payment_ref": payment.payment_id})

        response = parent_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["canRefund"] is False
        assert response.data["availableAmount"] == 10000

    def test_parent_payments(self, parent_client, parent, payment):
        url = reverse("payments:parent-payments", kwargs={"parent_id": parent.pk})

        response = parent_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert [entry["id"] for entry in response.data] == [str(payment.pk)]

    def test_other_parents_payments_forbidden(self, parent_client, other_parent):
        url = reverse("payments:parent-payments", kwargs={"parent_id": other_parent.pk})

        assert parent_client.get(url).status_code == status.HTTP_403_FORBIDDEN

    def test_admin_list(self, admin_api_client, payment):
        PaymentFactory()

        response = admin_api_client.get(reverse("payments:payment-list"), {"page": 1, "limit": 1})

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total"] == 2
        assert response.data["totalPages"] == 2
        assert len(response.data["payments"]) == 1

    def test_admin_list_bad_status(self, admin_api_client, db):
        response = admin_api_client.get(reverse("payments:payment-list"), {"status": "settled"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "VALIDATION"

    def test_admin_list_bad_parent_id(self, admin_api_client, db):
        """Should reject a non-numeric parent filter instead of failing the query."""
        response = admin_api_client.get(reverse("payments:payment-list"), {"parentId": "abc"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "VALIDATION"

    def test_admin_list_by_parent(self, admin_api_client, parent, payment):
        PaymentFactory()

        response = admin_api_client.get(reverse("payments:payment-list"), {"parentId": str(parent.pk)})

        assert response.status_code == status.HTTP_200_OK
        assert [entry["id"] for entry in response.data["payments"]] == [str(payment.pk)]

    def test_admin_list_requires_admin(self, parent_client):
        response = parent_client.get(reverse("payments:payment-list"))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert error_code(response) == "UNAUTHORIZED"


# =============================================================================
# Refunds
# =============================================================================


@pytest.mark.django_db
class TestRefundViews:
    def test_parent_requests_refund(self, parent_client, parent, payment):
        response = parent_client.post(
            reverse("payments:refund-request"),
            {"paymentId": payment.payment_id, "amount": 2500, "reason": "Schedule conflict"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        refund = response.data["refund"]
        assert refund["status"] == "pending"
        assert refund["amount"] == 2500
        assert refund["source"] == RefundSource.WEB
        assert refund["requestedBy"] == parent.pk

    def test_admin_request_source(self, admin_api_client, payment):
        response = admin_api_client.post(
            reverse("payments:refund-request"),
            {"paymentId": str(payment.pk), "amount": 2500},
            format="json",
        )

        assert response.data["refund"]["source"] == RefundSource.ADMIN_DASHBOARD

    def test_other_parent_cannot_request(self, api_client, other_parent, payment):
        api_client.force_authenticate(user=other_parent)

        response = api_client.post(
            reverse("payments:refund-request"),
            {"paymentId": payment.payment_id, "amount": 2500},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not Refund.objects.exists()

    def test_amount_exceeds(self, parent_client, payment):
        response = parent_client.post(
            reverse("payments:refund-request"),
            {"paymentId": payment.payment_id, "amount": 10001},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "AMOUNT_EXCEEDS_REFUNDABLE"

    def test_admin_approves(self, admin_api_client, payment, fake_adapter):
        refund = RefundFactory(payment=payment, amount_cents=10000)

        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refund"]["status"] == RefundStatus.COMPLETED
        assert response.data["payment"]["refundStatus"] == "full"
        assert response.data["payment"]["status"] == "refunded"
        assert response.data["playersUpdated"] == 2

    def test_admin_rejects(self, admin_api_client, payment, fake_adapter):
        refund = RefundFactory(payment=payment)

        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {
                "paymentId": payment.payment_id,
                "refundId": str(refund.pk),
                "action": "reject",
                "adminNotes": "Outside window",
            },
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["refund"]["status"] == RefundStatus.REJECTED
        assert fake_adapter.refund_calls == []

    def test_already_processed(self, admin_api_client, payment, fake_adapter):
        refund = RefundFactory(payment=payment, status=RefundStatus.COMPLETED)

        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert error_code(response) == "ALREADY_PROCESSED"

    def test_invalid_action(self, admin_api_client, payment):
        refund = RefundFactory(payment=payment)

        response = admin_api_client.post(
            reverse("payments:refund-process"),
            {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "refund"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "VALIDATION"

    def test_parent_cannot_process(self, parent_client, payment):
        refund = RefundFactory(payment=payment)

        response = parent_client.post(
            reverse("payments:refund-process"),
            {"paymentId": payment.payment_id, "refundId": str(refund.pk), "action": "approve"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Refund.objects.get(pk=refund.pk).status == RefundStatus.PENDING

    def test_pending_list(self, admin_api_client, payment):
        RefundFactory(payment=payment)
        RefundFactory(payment=payment, amount_cents=100, status=RefundStatus.REJECTED)

        response = admin_api_client.get(reverse("payments:refund-pending"))

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 1
        assert response.data[0]["paymentId"] == payment.payment_id
        assert response.data[0]["paymentAmount"] == 10000

    def test_refunded_payments_list(self, admin_api_client, payment):
        PaymentFactory()
        RefundFactory(payment=payment)

        response = admin_api_client.get(reverse("payments:refund-all"))

        assert [entry["id"] for entry in response.data] == [str(payment.pk)]


# =============================================================================
# Reconciliation
# =============================================================================


@pytest.mark.django_db
class TestReconciliationViews:
    def test_sync_one(self, admin_api_client, payment, fake_adapter):
        fake_adapter.add_remote_refund(payment.payment_id, 1500)
        url = reverse("payments:payment-sync-refunds", kwargs={"payment_ref": payment.payment_id})

        response = admin_api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["success"] is True
        assert response.data["refundsAdded"] == 1
        assert response.data["refundStatus"] == "partial"

    def test_sync_one_unknown(self, admin_api_client, fake_adapter):
        url = reverse("payments:payment-sync-refunds", kwargs={"payment_ref": "sq_pay_missing"})

        response = admin_api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["success"] is False
        assert response.data["found"] is False

    def test_sync_all(self, admin_api_client, payment, fake_adapter):
        fake_adapter.add_remote_refund(payment.payment_id, 1500)

        response = admin_api_client.post(reverse("payments:sync-refunds"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["paymentsProcessed"] == 1
        assert response.data["refundsAdded"] == 1
        assert response.data["amountAddedCents"] == 1500

    def test_sync_all_in_progress(self, admin_api_client, payment, fake_adapter, mock_redis):
        mock_redis.set.return_value = False

        response = admin_api_client.post(reverse("payments:sync-refunds"))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert error_code(response) == "RECONCILIATION_IN_PROGRESS"

    def test_sync_by_date(self, admin_api_client, payment, fake_adapter):
        response = admin_api_client.post(
            reverse("payments:sync-refunds-by-date"),
            {"startDate": "2000-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["paymentsProcessed"] == 1

    def test_sync_by_date_reversed(self, admin_api_client, db):
        response = admin_api_client.post(
            reverse("payments:sync-refunds-by-date"),
            {"startDate": "2025-02-01T00:00:00Z", "endDate": "2025-01-01T00:00:00Z"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "VALIDATION"

    def test_unknown_refunds(self, admin_api_client, square_config, fake_adapter):
        fake_adapter.add_remote_refund("sq_pay_elsewhere", 700)

        response = admin_api_client.get(reverse("payments:unknown-refunds"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["unknownPaymentIds"] == ["sq_pay_elsewhere"]

    def test_sync_requires_admin(self, parent_client):
        assert parent_client.post(reverse("payments:sync-refunds")).status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# Processor Configuration
# =============================================================================


@pytest.mark.django_db
class TestConfigurationViews:
    def test_frontend_config_is_public(self, api_client, square_config):
        response = api_client.get(reverse("payments:config-frontend"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data == square_config.public_config()

    def test_frontend_config_preferred(self, api_client, square_config, clover_config):
        response = api_client.get(reverse("payments:config-frontend"), {"processor": "clover"})

        assert response.data["processor"] == "clover"

    def test_frontend_config_without_active(self, api_client, db):
        response = api_client.get(reverse("payments:config-frontend"))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "CONFIGURATION_ERROR"

    def test_list_hides_secrets(self, admin_api_client, square_config):
        response = admin_api_client.get(reverse("payments:config-list"))

        assert response.status_code == status.HTTP_200_OK
        entry = response.data[0]
        assert "accessToken" not in entry
        assert entry["hasAccessToken"] is True
        assert entry["locationId"] == "L-SANDBOX"

    def test_create(self, admin_api_client, square_config):
        response = admin_api_client.post(
            reverse("payments:config-list"),
            {
                "kind": "clover",
                "name": "Front desk",
                "accessToken": "clover-token",
                "merchantId": "MERCHANT9",
                "isDefault": True,
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["isDefault"] is True
        assert not ProcessorConfiguration.objects.get(pk=square_config.pk).is_default

    def test_create_missing_credentials(self, admin_api_client, db):
        response = admin_api_client.post(
            reverse("payments:config-list"),
            {"kind": "clover", "accessToken": "clover-token"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "CONFIGURATION_ERROR"

    def test_update_with_stale_version(self, admin_api_client, square_config):
        url = reverse("payments:config-detail", kwargs={"pk": square_config.pk})

        response = admin_api_client.put(url, {"name": "Renamed", "expectedVersion": 9}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_update_keeps_blank_secret(self, admin_api_client, square_config):
        url = reverse("payments:config-detail", kwargs={"pk": square_config.pk})

        response = admin_api_client.put(url, {"name": "Renamed", "accessToken": ""}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["name"] == "Renamed"
        assert ProcessorConfiguration.objects.get(pk=square_config.pk).access_token == "EAAA-sandbox-token"

    def test_delete_last_active(self, admin_api_client, square_config):
        url = reverse("payments:config-detail", kwargs={"pk": square_config.pk})

        response = admin_api_client.delete(url)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert error_code(response) == "CONFIGURATION_ERROR"

    def test_delete(self, admin_api_client, square_config, clover_config):
        url = reverse("payments:config-detail", kwargs={"pk": clover_config.pk})

        assert admin_api_client.delete(url).status_code == status.HTTP_204_NO_CONTENT

    def test_get_unknown(self, admin_api_client, db):
        url = reverse("payments:config-detail", kwargs={"pk": uuid.uuid4()})

        response = admin_api_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert error_code(response) == "NOT_FOUND"

    def test_activate(self, admin_api_client, square_config, clover_config):
        url = reverse("payments:config-activate", kwargs={"pk": clover_config.pk})

        response = admin_api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["isDefault"] is True

    def test_active_summary(self, admin_api_client, square_config):
        response = admin_api_client.get(reverse("payments:config-active"))

        assert response.data["processor"] == "square"
        assert response.data["activeCount"] == 1

    def test_test_endpoint(self, admin_api_client, square_config, fake_adapter):
        url = reverse("payments:config-test", kwargs={"pk": square_config.pk})

        response = admin_api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["success"] is True
        assert response.data["message"] == "Connection successful"

    def test_test_endpoint_failure_still_200(self, admin_api_client, db):
        config = ProcessorConfigurationFactory()
        ProcessorConfiguration.objects.filter(pk=config.pk).update(location_id="")
        url = reverse("payments:config-test", kwargs={"pk": config.pk})

        response = admin_api_client.post(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["success"] is False
        assert response.data["errorCode"] == "CONFIGURATION_ERROR"

    def test_test_all(self, admin_api_client, square_config, fake_adapter):
        response = admin_api_client.post(reverse("payments:config-test-all"))

        assert response.data["allPassed"] is True

    def test_config_requires_admin(self, parent_client, square_config):
        assert parent_client.get(reverse("payments:config-list")).status_code == status.HTTP_403_FORBIDDEN
