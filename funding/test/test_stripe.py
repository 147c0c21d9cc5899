"""
Tests for credit card payments through Stripe.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import stripe
from django.test import TestCase, override_settings

from funding.infra.models import ConnectedAccountORM, OrderORM, PaymentMethodORM
from funding.infra.repositories import OrderRepository, PaymentMethodRepository
from funding.payment_providers.base import PaymentIntentRequiresAction, PaymentProviderError
from funding.payment_providers.stripe_creditcard import (
    StripeCreditCardProvider,
    extract_fees,
    rewrite_error_message,
)
from funding.test.factories import create_collective, create_host, create_order, create_payment_method, create_platform, create_user


def balance_transaction(amount=10000, currency="usd", stripe_fee=300, application_fee=50):
    fee_details = [SimpleNamespace(type="stripe_fee", amount=stripe_fee)]
    if application_fee:
        fee_details.append(SimpleNamespace(type="application_fee", amount=application_fee))
    result = MagicMock(
        amount=amount,
        currency=currency,
        fee=stripe_fee + application_fee,
        fee_details=fee_details,
    )
    result.to_dict.return_value = {"id": "txn_1", "amount": amount}
    return result


def stripe_customer(customer_id, **fields):
    """Customer object read both by attribute and by key."""
    customer = MagicMock(id=customer_id, **fields)
    customer.__getitem__.side_effect = fields.__getitem__
    return customer


class StripeErrorMessageTest(TestCase):
    """Tests for the messages shown on failed charges."""

    def test_known_message_kept(self):
        self.assertEqual(rewrite_error_message("Your card has expired."), "Your card has expired.")

    def test_identified_message_rewritten(self):
        """Test that partially matching messages are replaced."""
        message = "You have exceeded the maximum number of declines on this card in the last 24 hour period."
        self.assertEqual(rewrite_error_message(message), "Your card was declined.")

    def test_unknown_message(self):
        """Test that unknown errors point to support."""
        self.assertIn("please contact support@", rewrite_error_message("Something odd"))

    def test_extract_fees(self):
        fees = extract_fees(balance_transaction(stripe_fee=300, application_fee=50))
        self.assertEqual(fees, {"total": 350, "stripe_fee": 300, "application_fee": 50, "other": 0})


@override_settings(STRIPE_ACCOUNT_ID="acct_platform", STRIPE_SECRET_KEY="sk_test")
class StripeCreditCardProviderTest(TestCase):
    """Tests for StripeCreditCardProvider."""

    def setUp(self):
        """Set up test data."""
        create_platform()
        self.host = create_host()
        ConnectedAccountORM.objects.create(collective=self.host, service="stripe", username="acct_host")
        self.collective = create_collective("webpack", host=self.host, host_fee_percent=10)
        self.user = create_user()
        self.payment_method = create_payment_method(
            "stripe",
            "creditcard",
            name="4242",
            token="tok_1",
            customer_id="cus_platform",
            data={"customerIdForHost": {"acct_host": "cus_host"}},
        )
        order_orm = create_order(self.user, self.collective, self.payment_method)
        self.order_repo = OrderRepository()
        self.order = self.order_repo.populate(self.order_repo.get_by_id(order_orm.id))
        self.provider = StripeCreditCardProvider()

        customer = stripe_customer("cus_host", default_source="card_1")
        patcher = patch.object(stripe.Customer, "retrieve", return_value=customer)
        self.customer_retrieve = patcher.start()
        self.addCleanup(patcher.stop)

    def _succeeded_intent(self):
        intent = MagicMock(id="pi_1", status="succeeded", next_action=None, latest_charge="ch_1")
        intent.to_dict.return_value = {"id": "pi_1"}
        return intent

    def _charge(self):
        charge = MagicMock(id="ch_1", balance_transaction="txn_1")
        charge.to_dict.return_value = {"id": "ch_1"}
        return charge

    def test_host_without_stripe_account(self):
        """Test that charging requires the host to have connected Stripe."""
        ConnectedAccountORM.objects.all().delete()
        with self.assertRaises(PaymentProviderError) as context:
            self.provider.process_order(self.order)
        self.assertIn("doesn't have a Stripe account set up", str(context.exception))

    def test_charge_on_host_account(self):
        """Test a successful charge and its ledger entries."""
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}) as create, \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()), \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            credit = self.provider.process_order(self.order)

        create_kwargs = create.call_args.kwargs
        self.assertEqual(create_kwargs["stripe_account"], "acct_host")
        self.assertEqual(create_kwargs["customer"], "cus_host")
        self.assertEqual(create_kwargs["payment_method"], "card_1")
        self.assertEqual(create_kwargs["application_fee_amount"], 500)

        self.assertEqual(credit.amount, 10000)
        self.assertEqual(credit.host_currency, "USD")
        self.assertEqual(credit.payment_processor_fee_in_host_currency, -300)
        self.assertEqual(credit.platform_fee_in_host_currency, -50)
        self.assertEqual(credit.host_fee_in_host_currency, -1000)
        self.assertEqual(credit.net_amount_in_collective_currency, 8650)
        self.assertEqual(credit.data["charge"], {"id": "ch_1"})
        self.assertIsNotNone(PaymentMethodORM.objects.get(id=self.payment_method.id).confirmed_at)

    def test_recurring_order_is_set_up_for_future_usage(self):
        """Test that recurring contributions can be charged off session."""
        self.order.interval = "month"
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}) as create, \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()), \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            self.provider.process_order(self.order)

        self.assertEqual(create.call_args.kwargs["setup_future_usage"], "off_session")

    def test_payment_requires_action(self):
        """Test that 3D Secure confirmations are saved on the order."""
        intent = MagicMock(id="pi_1", status="requires_action", next_action={"type": "use_stripe_sdk"})
        intent.to_dict.return_value = {"id": "pi_1", "status": "requires_action"}

        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", return_value=intent):
            with self.assertRaises(PaymentIntentRequiresAction) as context:
                self.provider.process_order(self.order)

        self.assertEqual(context.exception.stripe_account, "acct_host")
        self.assertEqual(context.exception.stripe_response["paymentIntent"]["status"], "requires_action")
        order_orm = OrderORM.objects.get(id=self.order.id)
        self.assertEqual(order_orm.data["paymentIntent"], {"id": "pi_1", "status": "requires_action"})

    def test_confirmed_payment_intent_is_reused(self):
        """Test that an order waiting for confirmation does not create a second intent."""
        self.order.data["paymentIntent"] = {"id": "pi_1", "status": "requires_action"}
        with patch.object(stripe.PaymentIntent, "create") as create, \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()) as confirm, \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            self.provider.process_order(self.order)

        create.assert_not_called()
        confirm.assert_called_once_with("pi_1", stripe_account="acct_host")

    def test_declined_card(self):
        """Test that card errors reach the contributor."""
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", side_effect=error):
            with self.assertRaises(PaymentProviderError) as context:
                self.provider.process_order(self.order)

        self.assertEqual(context.exception.message, "Your card was declined.")

    def test_failed_payment_intent(self):
        """Test that an intent that did not succeed is an unknown error."""
        intent = MagicMock(id="pi_1", status="canceled", next_action=None)
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", return_value=intent):
            with self.assertRaises(PaymentProviderError) as context:
                self.provider.process_order(self.order)

        self.assertIn("please contact support@", context.exception.message)

    def test_refund(self):
        """Test refunding a card payment on the host account."""
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()), \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            credit = self.provider.process_order(self.order)

        refund = MagicMock(id="re_1", balance_transaction="txn_2")
        refund.to_dict.return_value = {"id": "re_1"}
        with patch.object(stripe.Refund, "create", return_value=refund) as create_refund, \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction(-10000, stripe_fee=0, application_fee=0)):
            result = self.provider.refund_transaction(credit)

        create_refund.assert_called_once_with(charge="ch_1", refund_application_fee=False, stripe_account="acct_host")
        self.assertIsNotNone(result.refund_transaction_id)
        self.assertEqual(result.data["refund"], {"id": "re_1"})

    def test_refund_made_on_stripe_dashboard(self):
        """Test recording a refund that Stripe already processed."""
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()), \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            credit = self.provider.process_order(self.order)

        charge = self._charge()
        charge.__getitem__.side_effect = {"refunds": SimpleNamespace(data=[SimpleNamespace(id="re_1")])}.__getitem__
        refund = MagicMock(id="re_1", balance_transaction="txn_2")
        refund.to_dict.return_value = {"id": "re_1"}
        with patch.object(stripe.Charge, "retrieve", return_value=charge), \
                patch.object(stripe.Refund, "retrieve", return_value=refund) as retrieve_refund, \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction(-10000, stripe_fee=0, application_fee=0)):
            result = self.provider.refund_transaction_only_in_database(credit)

        retrieve_refund.assert_called_once_with("re_1", stripe_account="acct_host")
        self.assertIsNotNone(result.refund_transaction_id)

    def test_dashboard_refund_not_found(self):
        with patch.object(stripe.PaymentIntent, "create", return_value={"id": "pi_1"}), \
                patch.object(stripe.PaymentIntent, "confirm", return_value=self._succeeded_intent()), \
                patch.object(stripe.Charge, "retrieve", return_value=self._charge()), \
                patch.object(stripe.BalanceTransaction, "retrieve", return_value=balance_transaction()):
            credit = self.provider.process_order(self.order)

        charge = self._charge()
        charge.__getitem__.side_effect = {"refunds": SimpleNamespace(data=[])}.__getitem__
        with patch.object(stripe.Charge, "retrieve", return_value=charge):
            with self.assertRaises(PaymentProviderError) as context:
                self.provider.refund_transaction_only_in_database(credit)
        self.assertIn("No refunds found in stripe.", str(context.exception))

    def test_setup_credit_card(self):
        """Test that a card is confirmed for later use and its intent saved."""
        customer = stripe_customer("cus_platform", sources=SimpleNamespace(data=[SimpleNamespace(id="card_1")]))
        setup_intent = MagicMock(id="seti_1", status="succeeded", next_action=None)
        payment_method = PaymentMethodRepository().get_by_id(self.payment_method.id)

        with patch.object(stripe.Customer, "retrieve", return_value=customer), \
                patch.object(stripe.SetupIntent, "create", return_value=setup_intent) as create:
            self.provider.setup_credit_card(payment_method)

        create.assert_called_once_with(customer="cus_platform", payment_method="card_1", confirm=True)
        saved = PaymentMethodORM.objects.get(id=self.payment_method.id)
        self.assertEqual(saved.data["setupIntent"], {"id": "seti_1", "status": "succeeded"})
