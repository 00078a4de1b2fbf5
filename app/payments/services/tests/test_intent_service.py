"""
Tests for PaymentIntentService.

Tests cover:
- Validation failures (amount, plan, destination account, amount policy)
- Intent creation, row linking and destination routing
- Idempotent replays by client token
- Reuse and cancellation of pending intents
- Gateway errors during creation and confirmation
"""

import pytest

from payments.exceptions import StripeAPIUnavailableError, StripeCardDeclinedError
from payments.ledger.models import LedgerEntry
from payments.models import Payment
from payments.services import PaymentIntentService, PaymentReconciler
from payments.state_machines import Bucket, PaymentKind, PaymentStatus
from payments.tests.factories import PaymentFactory, intent_result


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.django_db
class TestStartPaymentValidation:
    """Requests rejected before any Payment row or gateway call."""

    @pytest.mark.parametrize("amount", [0, -100, True, "10000", 100.0])
    def test_invalid_amount(self, application_with_plan, mock_stripe_adapter, amount):
        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, amount)

        assert not result.success
        assert result.error_code == "INVALID_AMOUNT"
        assert "amount_cents" in result.errors
        mock_stripe_adapter["create"].assert_not_called()

    def test_missing_plan(self, application, mock_stripe_adapter):
        result = PaymentIntentService.start_payment(application, Bucket.OPERATING, 10000)

        assert result.error_code == "PAYMENT_PLAN_MISSING"

    def test_missing_destination_account(self, application_with_plan, mock_stripe_adapter):
        firm = application_with_plan.firm
        firm.stripe_escrow_account_id = ""
        firm.save()

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.DEPOSIT, 200000)

        assert result.error_code == "DESTINATION_ACCOUNT_MISSING"
        assert not Payment.objects.exists()

    def test_deposit_amount_not_allowed(self, application_with_plan, mock_stripe_adapter):
        result = PaymentIntentService.start_payment(application_with_plan, Bucket.DEPOSIT, 150000)

        assert result.error_code == "AMOUNT_NOT_ALLOWED"
        assert result.errors == {"amount_cents": ["200000"]}
        mock_stripe_adapter["create"].assert_not_called()
        assert not Payment.objects.exists()

    def test_operating_amount_not_allowed(self, application_with_plan, mock_stripe_adapter):
        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 50050)

        assert result.error_code == "AMOUNT_NOT_ALLOWED"
        assert "whole dollars from 100000 to 2410000" in result.errors["amount_cents"]
        assert "10000" in result.errors["amount_cents"]

    def test_in_flight_money_is_not_requested_twice(self, application_with_plan, mock_stripe_adapter):
        PaymentFactory(
            application=application_with_plan,
            kind=PaymentKind.DEPOSIT,
            status=PaymentStatus.PROCESSING,
            amount_cents=200000,
        )

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.DEPOSIT, 200000)

        assert result.error_code == "AMOUNT_NOT_ALLOWED"
        assert result.errors == {"amount_cents": []}


# =============================================================================
# Creation
# =============================================================================


@pytest.mark.django_db
class TestStartPayment:
    def test_creates_and_links_operating_payment(self, application_with_plan, mock_stripe_adapter):
        mock_stripe_adapter["create"].return_value = intent_result("pi_new", amount_cents=410000)

        result = PaymentIntentService.start_payment(
            application_with_plan,
            Bucket.OPERATING,
            410000,
            idempotency_token="tok-1",
        )

        assert result.success
        handle = result.data
        assert handle.payment_intent_id == "pi_new"
        assert handle.client_secret == "pi_new_secret_test"
        assert handle.reused is False

        payment = Payment.objects.get()
        assert payment.provider_intent_id == "pi_new"
        assert payment.kind == PaymentKind.OPERATING
        assert payment.status == PaymentStatus.CREATED
        assert payment.reason == "operating_top_up"
        assert payment.idempotency_key == f"pay:{application_with_plan.id}:operating:operating_top_up:tok-1"

        params = mock_stripe_adapter["create"].call_args.args[0]
        assert params.amount_cents == 410000
        assert params.idempotency_key == payment.idempotency_key
        assert params.transfer_data == {"destination": application_with_plan.firm.stripe_operating_account_id}
        assert params.metadata == {
            "app_id": str(application_with_plan.id),
            "firm_id": str(application_with_plan.firm_id),
            "payment_id": str(payment.id),
            "bucket": "operating",
            "reason": "operating_top_up",
        }

    def test_deposit_goes_to_escrow(self, application_with_plan, mock_stripe_adapter):
        mock_stripe_adapter["create"].return_value = intent_result("pi_dep", amount_cents=200000)

        result = PaymentIntentService.start_payment(application_with_plan, "deposit", 200000)

        assert result.success
        assert result.data.payment.kind == PaymentKind.DEPOSIT
        params = mock_stripe_adapter["create"].call_args.args[0]
        assert params.transfer_data == {"destination": application_with_plan.firm.stripe_escrow_account_id}

    def test_legacy_upfront_bucket_is_operating(self, application_with_plan, mock_stripe_adapter):
        mock_stripe_adapter["create"].return_value = intent_result("pi_legacy", amount_cents=10000)

        result = PaymentIntentService.start_payment(application_with_plan, "upfront", 10000)

        assert result.success
        assert result.data.payment.bucket == Bucket.OPERATING

    def test_replayed_token_returns_same_payment(self, application_with_plan, mock_stripe_adapter):
        mock_stripe_adapter["create"].return_value = intent_result("pi_once", amount_cents=10000)
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_once", amount_cents=10000)

        first = PaymentIntentService.start_payment(
            application_with_plan, Bucket.OPERATING, 10000, idempotency_token="tok-replay"
        )
        second = PaymentIntentService.start_payment(
            application_with_plan, Bucket.OPERATING, 10000, idempotency_token="tok-replay"
        )

        assert second.success
        assert second.data.reused is True
        assert second.data.payment.pk == first.data.payment.pk
        assert second.data.client_secret == "pi_once_secret_test"
        assert mock_stripe_adapter["create"].call_count == 1
        assert Payment.objects.count() == 1

    def test_replay_survives_retrieve_error(self, application_with_plan, mock_stripe_adapter):
        payment = PaymentFactory(
            application=application_with_plan,
            idempotency_key=f"pay:{application_with_plan.id}:operating:operating_top_up:tok-x",
            provider_intent_id="pi_replay",
        )
        mock_stripe_adapter["retrieve"].side_effect = StripeAPIUnavailableError("down")

        result = PaymentIntentService.start_payment(
            application_with_plan, Bucket.OPERATING, 10000, idempotency_token="tok-x"
        )

        assert result.success
        assert result.data.payment.pk == payment.pk
        assert result.data.client_secret is None
        assert result.data.status == PaymentStatus.CREATED

    def test_gateway_error_marks_payment_failed(self, application_with_plan, mock_stripe_adapter):
        mock_stripe_adapter["create"].side_effect = StripeAPIUnavailableError("Stripe is down")

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 10000)

        assert not result.success
        assert result.error_code == "STRIPE_UNAVAILABLE"
        payment = Payment.objects.get()
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Stripe is down"
        assert payment.provider_intent_id is None


# =============================================================================
# Pending Intents
# =============================================================================


@pytest.mark.django_db
class TestPendingIntents:
    def test_matching_pending_intent_is_reused(self, application_with_plan, mock_stripe_adapter):
        pending = PaymentFactory(
            application=application_with_plan,
            kind=PaymentKind.DEPOSIT,
            amount_cents=200000,
            provider_intent_id="pi_pending",
        )
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_pending", amount_cents=200000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.DEPOSIT, 200000)

        assert result.success
        assert result.data.reused is True
        assert result.data.payment.pk == pending.pk
        mock_stripe_adapter["create"].assert_not_called()
        mock_stripe_adapter["cancel"].assert_not_called()

    def test_mismatched_pending_intent_is_canceled(self, application_with_plan, mock_stripe_adapter):
        stale = PaymentFactory(
            application=application_with_plan,
            amount_cents=10000,
            provider_intent_id="pi_stale",
        )
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_stale", amount_cents=10000)
        mock_stripe_adapter["create"].return_value = intent_result("pi_fresh", amount_cents=410000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 410000)

        assert result.success
        assert result.data.payment_intent_id == "pi_fresh"
        mock_stripe_adapter["cancel"].assert_called_once_with("pi_stale")
        stale.refresh_from_db()
        assert stale.status == PaymentStatus.CANCELED

    def test_card_rail_intent_is_not_reused(self, application_with_plan, mock_stripe_adapter):
        stale = PaymentFactory(
            application=application_with_plan,
            kind=PaymentKind.DEPOSIT,
            amount_cents=200000,
            provider_intent_id="pi_card",
        )
        mock_stripe_adapter["retrieve"].return_value = intent_result(
            "pi_card", amount_cents=200000, payment_method_types=["card"]
        )
        mock_stripe_adapter["create"].return_value = intent_result("pi_bank", amount_cents=200000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.DEPOSIT, 200000)

        assert result.data.payment_intent_id == "pi_bank"
        stale.refresh_from_db()
        assert stale.status == PaymentStatus.CANCELED

    def test_cancel_error_still_supersedes_row(self, application_with_plan, mock_stripe_adapter):
        stale = PaymentFactory(application=application_with_plan, amount_cents=10000, provider_intent_id="pi_old")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_old", amount_cents=10000)
        mock_stripe_adapter["cancel"].side_effect = StripeAPIUnavailableError("down")
        mock_stripe_adapter["create"].return_value = intent_result("pi_new", amount_cents=200000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 200000)

        assert result.success
        stale.refresh_from_db()
        assert stale.status == PaymentStatus.CANCELED

    def test_superseded_intent_that_settles_is_still_recorded(self, application_with_plan, mock_stripe_adapter):
        stale = PaymentFactory(application=application_with_plan, amount_cents=10000, provider_intent_id="pi_old")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_old", amount_cents=10000)
        mock_stripe_adapter["cancel"].side_effect = StripeAPIUnavailableError("down")
        mock_stripe_adapter["create"].return_value = intent_result("pi_new", amount_cents=200000)
        PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 200000)

        # The cancel never reached the gateway and the tenant paid the old intent
        PaymentReconciler.reconcile_intent(intent_result("pi_old", status="succeeded", amount_cents=10000))

        stale.refresh_from_db()
        assert stale.status == PaymentStatus.SUCCEEDED
        assert LedgerEntry.objects.filter(payment_key="pi_old").exists()

    def test_uninspectable_pending_intent_is_canceled(self, application_with_plan, mock_stripe_adapter):
        pending = PaymentFactory(application=application_with_plan, amount_cents=10000, provider_intent_id="pi_dark")
        mock_stripe_adapter["retrieve"].side_effect = StripeAPIUnavailableError("down")
        mock_stripe_adapter["create"].return_value = intent_result("pi_next", amount_cents=10000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 10000)

        assert result.success
        assert result.data.payment_intent_id == "pi_next"
        mock_stripe_adapter["cancel"].assert_called_once_with("pi_dark")
        pending.refresh_from_db()
        assert pending.status == PaymentStatus.CANCELED

    def test_uninspectable_intent_cancel_failure_still_supersedes_row(
        self, application_with_plan, mock_stripe_adapter
    ):
        pending = PaymentFactory(application=application_with_plan, amount_cents=10000, provider_intent_id="pi_dark")
        mock_stripe_adapter["retrieve"].side_effect = StripeAPIUnavailableError("down")
        mock_stripe_adapter["cancel"].side_effect = StripeAPIUnavailableError("down")
        mock_stripe_adapter["create"].return_value = intent_result("pi_next", amount_cents=10000)

        result = PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 10000)

        assert result.success
        pending.refresh_from_db()
        assert pending.status == PaymentStatus.CANCELED

    def test_intent_past_confirmation_is_left_alone(self, application_with_plan, mock_stripe_adapter):
        submitted = PaymentFactory(application=application_with_plan, amount_cents=10000, provider_intent_id="pi_sub")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_sub", status="processing", amount_cents=10000)
        mock_stripe_adapter["create"].return_value = intent_result("pi_more", amount_cents=200000)

        PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 200000)

        mock_stripe_adapter["cancel"].assert_not_called()
        submitted.refresh_from_db()
        assert submitted.status == PaymentStatus.CREATED

    def test_other_bucket_pending_untouched(self, application_with_plan, mock_stripe_adapter):
        PaymentFactory(
            application=application_with_plan,
            kind=PaymentKind.DEPOSIT,
            amount_cents=200000,
            provider_intent_id="pi_deposit",
        )
        mock_stripe_adapter["create"].return_value = intent_result("pi_op", amount_cents=10000)

        PaymentIntentService.start_payment(application_with_plan, Bucket.OPERATING, 10000)

        mock_stripe_adapter["retrieve"].assert_not_called()


# =============================================================================
# Confirmation
# =============================================================================


@pytest.mark.django_db
class TestConfirmPayment:
    def test_unknown_intent(self, mock_stripe_adapter):
        result = PaymentIntentService.confirm_payment("pi_missing")

        assert result.error_code == "PAYMENT_NOT_FOUND"
        mock_stripe_adapter["retrieve"].assert_not_called()

    def test_confirm_moves_payment_to_processing(self, application_with_plan, mock_stripe_adapter):
        payment = PaymentFactory(application=application_with_plan, provider_intent_id="pi_confirm")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_confirm")
        mock_stripe_adapter["confirm"].return_value = intent_result("pi_confirm", status="processing")

        result = PaymentIntentService.confirm_payment("pi_confirm", payment_method_id="pm_bank")

        assert result.success
        assert result.data.status == "processing"
        call = mock_stripe_adapter["confirm"].call_args
        assert call.args == ("pi_confirm",)
        assert call.kwargs["payment_method_id"] == "pm_bank"
        assert call.kwargs["idempotency_key"].startswith(f"confirm:{payment.id}:")
        payment.refresh_from_db()
        assert payment.status == PaymentStatus.PROCESSING

    def test_in_flight_intent_not_confirmed_again(self, application_with_plan, mock_stripe_adapter):
        payment = PaymentFactory(application=application_with_plan, provider_intent_id="pi_done")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_done", status="succeeded")

        result = PaymentIntentService.confirm_payment("pi_done")

        assert result.success
        mock_stripe_adapter["confirm"].assert_not_called()
        payment.refresh_from_db()
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.ledger_entries.count() == 1

    def test_decline_marks_payment_failed(self, application_with_plan, mock_stripe_adapter):
        payment = PaymentFactory(application=application_with_plan, provider_intent_id="pi_decline")
        mock_stripe_adapter["retrieve"].return_value = intent_result("pi_decline")
        mock_stripe_adapter["confirm"].side_effect = StripeCardDeclinedError(
            "Your bank declined the debit", stripe_code="card_declined"
        )

        result = PaymentIntentService.confirm_payment("pi_decline")

        assert result.error_code == "CARD_DECLINED"
        payment.refresh_from_db()
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Your bank declined the debit"
