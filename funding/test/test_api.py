"""
Tests for the webhook and unsubscribe endpoints.
"""
import json
from unittest.mock import patch
from uuid import uuid4

import stripe
from django.test import Client, TestCase, override_settings

from funding.api.middleware import ErrorHandler, ValidationError
from funding.infra.models import ConnectedAccountORM, IdempotencyKey, NotificationORM
from funding.payment_providers.base import PaymentIntentRequiresAction, PaymentProviderError
from funding.services import paypal
from funding.services.email import generate_unsubscribe_token
from funding.test.factories import create_collective, create_host, create_user


class StripeWebhookTest(TestCase):
    """Tests for the Stripe webhook endpoint."""

    def setUp(self):
        """Set up test data."""
        self.client = Client()
        self.event = {"id": "evt_1", "type": "charge.succeeded"}

    def _post(self, body):
        return self.client.post(
            "/webhooks/stripe",
            data=body,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
        )

    def test_event_received(self):
        """Test that a signed event is acknowledged."""
        with patch.object(stripe.Webhook, "construct_event", return_value=self.event) as construct_event:
            response = self._post(json.dumps(self.event))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True})
        self.assertEqual(construct_event.call_args.args[1], "t=1,v1=abc")
        self.assertTrue(IdempotencyKey.objects.filter(key="evt_1", operation="STRIPE_WEBHOOK").exists())

    def test_replayed_event(self):
        """Test that a delivery already handled gets the same response."""
        body = json.dumps(self.event)
        with patch.object(stripe.Webhook, "construct_event", return_value=self.event):
            self._post(body)
            response = self._post(body)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True})
        self.assertEqual(IdempotencyKey.objects.count(), 1)

    def test_event_id_reused_with_other_payload(self):
        with patch.object(stripe.Webhook, "construct_event", return_value=self.event):
            self._post(json.dumps(self.event))
            response = self._post(json.dumps({**self.event, "type": "charge.refunded"}))

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "DUPLICATE_REQUEST")

    def test_invalid_signature(self):
        """Test that unsigned events are refused."""
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc")
        with patch.object(stripe.Webhook, "construct_event", side_effect=error):
            response = self._post(json.dumps(self.event))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["message"], "Invalid webhook signature")

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get("/webhooks/stripe").status_code, 405)


class PaypalWebhookTest(TestCase):
    """Tests for the PayPal webhook endpoint."""

    def setUp(self):
        """Set up test data."""
        self.client = Client()
        self.host = create_host()
        ConnectedAccountORM.objects.create(
            collective=self.host,
            service="paypal",
            client_id="client",
            token="secret",
            settings={"webhookId": "WH-1"},
        )
        self.event = {"id": "WH-EVENT-1", "event_type": "PAYMENT.PAYOUTS-ITEM.SUCCEEDED"}

    def _post(self, host_id, body):
        return self.client.post(f"/webhooks/paypal/{host_id}", data=body, content_type="application/json")

    def test_event_received(self):
        """Test that a verified event is acknowledged once."""
        with patch("funding.api.views.paypal.validate_webhook_event") as validate:
            response = self._post(self.host.id, json.dumps(self.event))
            replay = self._post(self.host.id, json.dumps(self.event))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True})
        self.assertEqual(replay.json(), {"received": True})
        connected_account, _, event = validate.call_args.args
        self.assertEqual(connected_account.client_id, "client")
        self.assertEqual(event, self.event)
        self.assertEqual(IdempotencyKey.objects.filter(operation="PAYPAL_WEBHOOK").count(), 1)

    def test_invalid_json(self):
        response = self._post(self.host.id, "{not json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["message"], "Invalid JSON")

    def test_event_without_id(self):
        """Test that events without an id are refused before verification."""
        with patch("funding.api.views.paypal.validate_webhook_event") as validate:
            missing_id = self._post(self.host.id, json.dumps({"event_type": "PAYMENT.PAYOUTS-ITEM.SUCCEEDED"}))
            not_an_object = self._post(self.host.id, json.dumps(["WH-EVENT-1"]))

        self.assertEqual(missing_id.status_code, 400)
        self.assertEqual(missing_id.json()["error"]["message"], "Missing event id")
        self.assertEqual(not_an_object.status_code, 400)
        validate.assert_not_called()
        self.assertFalse(IdempotencyKey.objects.exists())

    def test_unknown_host(self):
        response = self._post(uuid4(), json.dumps(self.event))
        self.assertEqual(response.status_code, 404)

    def test_host_without_paypal(self):
        """Test that events for hosts without PayPal credentials are refused."""
        other = create_host("other-host")
        response = self._post(other.id, json.dumps(self.event))

        self.assertEqual(response.status_code, 404)
        self.assertIn("is not connected to PayPal", response.json()["error"]["message"])

    def test_unverified_event(self):
        """Test that events failing the signature check are refused."""
        error = paypal.PaypalError("Invalid webhook request")
        with patch("funding.api.views.paypal.validate_webhook_event", side_effect=error):
            response = self._post(self.host.id, json.dumps(self.event))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], {"code": "UNAUTHORIZED", "message": "Invalid webhook request"})
        self.assertFalse(IdempotencyKey.objects.exists())


@override_settings(EMAIL_UNSUBSCRIBE_SECRET="secret")
class UnsubscribeViewTest(TestCase):
    """Tests for the unsubscribe endpoint."""

    def setUp(self):
        """Set up test data."""
        self.client = Client()
        self.user = create_user()
        create_collective("webpack")

    def test_unsubscribe(self):
        token = generate_unsubscribe_token("backer@example.com", "webpack", "thankyou")

        response = self.client.get(f"/services/email/unsubscribe/backer@example.com/webpack/thankyou/{token}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"response": "ok"})
        self.assertFalse(NotificationORM.objects.get(user=self.user, type="thankyou").active)

    def test_invalid_token(self):
        """Test that a forged link is refused."""
        response = self.client.get("/services/email/unsubscribe/backer@example.com/webpack/thankyou/forged")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], {"code": "VALIDATION_ERROR", "message": "Invalid token"})
        self.assertFalse(NotificationORM.objects.exists())

    def test_unknown_user(self):
        token = generate_unsubscribe_token("nobody@example.com", "webpack", "thankyou")
        response = self.client.get(f"/services/email/unsubscribe/nobody@example.com/webpack/thankyou/{token}")
        self.assertEqual(response.status_code, 404)


class ErrorHandlerTest(TestCase):
    """Tests for the JSON error responses."""

    def test_validation_error(self):
        response = ErrorHandler.handle_error(ValidationError("Host not found", "NOT_FOUND"))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(json.loads(response.content), {"error": {"code": "NOT_FOUND", "message": "Host not found"}})

    def test_payment_provider_error(self):
        """Test that provider errors keep their message and code."""
        response = ErrorHandler.handle_error(PaymentProviderError("Your card was declined."))
        self.assertEqual(response.status_code, 402)
        self.assertEqual(
            json.loads(response.content)["error"],
            {"code": "PAYMENT_ERROR", "message": "Your card was declined."},
        )

    def test_paypal_error(self):
        response = ErrorHandler.handle_error(paypal.PaypalError("PayPal is unavailable"))
        self.assertEqual(response.status_code, 502)
        self.assertEqual(json.loads(response.content)["error"]["code"], "PAYPAL_ERROR")

    def test_payment_requires_action(self):
        """Test that the client gets what it needs to confirm the payment."""
        error = PaymentIntentRequiresAction(
            "Payment Intent require action",
            stripe_account="acct_host",
            stripe_response={"paymentIntent": {"id": "pi_1"}},
        )
        response = ErrorHandler.handle_error(error)

        self.assertEqual(response.status_code, 402)
        body = json.loads(response.content)["error"]
        self.assertEqual(body["code"], "REQUIRES_ACTION")
        self.assertEqual(body["stripeAccount"], "acct_host")
        self.assertEqual(body["stripeResponse"], {"paymentIntent": {"id": "pi_1"}})

    def test_unexpected_error_is_hidden(self):
        """Test that unexpected errors are logged but not shown."""
        with self.assertLogs("funding.api.middleware", level="ERROR"):
            response = ErrorHandler.handle_error(KeyError("secret"))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            json.loads(response.content)["error"],
            {"code": "INTERNAL_ERROR", "message": "An internal error occurred"},
        )
