"""
Credit card payments through Stripe Connect.

Cards are saved as customers of the platform Stripe account and shared with
the Stripe account of the host, which is where charges happen.
"""
from __future__ import annotations

import logging
from uuid import UUID

import stripe
from django.conf import settings
from django.utils import timezone

from funding.domain.transaction import Transaction, TransactionKind, TransactionType
from funding.infra.repositories import ConnectedAccountRepository, OrderRepository, PaymentMethodRepository
from funding.payment_providers.base import PaymentIntentRequiresAction, PaymentProvider, PaymentProviderError
from funding.services import fees

logger = logging.getLogger(__name__)

REQUIRES_ACTION_MESSAGE = "Payment Intent require action"

# Stripe messages shown to the contributor as they are
KNOWN_ERRORS = (
    "Your card has insufficient funds.",
    "Your card was declined.",
    "Your card does not support this type of purchase.",
    "Your card has expired.",
    "Your card's security code is incorrect.",
    "Your card number is incorrect.",
    "The zip code you supplied failed validation.",
    "Invalid amount.",
    REQUIRES_ACTION_MESSAGE,
)

# Partial Stripe messages and what the contributor sees instead
IDENTIFIED_ERRORS = {
    "This object cannot be accessed right now because another API request or Stripe process is currently accessing it.":
        "Payment Processing error (API request).",
    "You cannot confirm this PaymentIntent because it's missing a payment method.":
        "Internal Payment error (invalid PaymentIntent)",
    "You have exceeded the maximum number of declines on this card": "Your card was declined.",
    "An error occurred while processing your card.": "Payment Processing error (API error).",
    "This account cannot currently make live charges.": "Payment Processing error (Host error).",
}


def unknown_error_message() -> str:
    return f"Something went wrong with the payment, please contact support@{settings.PLATFORM_DOMAIN}."


def rewrite_error_message(message: str) -> str:
    """Message shown to the contributor for a failed charge."""
    if message in KNOWN_ERRORS:
        return message
    for partial_message, rewritten in IDENTIFIED_ERRORS.items():
        if partial_message in message:
            return rewritten
    return unknown_error_message()


def extract_fees(balance_transaction) -> dict:
    """Split the fees of a Stripe balance transaction, in cents."""
    result = {"total": balance_transaction.fee, "stripe_fee": 0, "application_fee": 0, "other": 0}
    for fee in balance_transaction.fee_details:
        if fee.type == "stripe_fee":
            result["stripe_fee"] += fee.amount
        elif fee.type == "application_fee":
            result["application_fee"] += fee.amount
        else:
            result["other"] += fee.amount
    return result


def _to_dict(stripe_object) -> dict:
    return stripe_object.to_dict() if stripe_object is not None else None


def _get_field(stripe_object, name, default=None):
    try:
        return stripe_object[name]
    except (KeyError, TypeError):
        return default


class StripeCreditCardProvider(PaymentProvider):
    features = {"recurring": True, "wait_to_charge": False}

    def __init__(
        self,
        ledger=None,
        collective_repo=None,
        payment_method_repo: PaymentMethodRepository | None = None,
        connected_account_repo: ConnectedAccountRepository | None = None,
        order_repo: OrderRepository | None = None,
    ):
        super().__init__(ledger=ledger, collective_repo=collective_repo)
        self.payment_method_repo = payment_method_repo or PaymentMethodRepository()
        self.connected_account_repo = connected_account_repo or ConnectedAccountRepository()
        self.order_repo = order_repo or OrderRepository(self.collective_repo, self.payment_method_repo)
        stripe.api_key = settings.STRIPE_SECRET_KEY

    def get_host_stripe_account(self, collective) -> str:
        """Stripe account id of the host of ``collective``."""
        host = self.collective_repo.get_host(collective)
        account = self.connected_account_repo.get_latest(host.id, "stripe") if host else None
        if account is None or not account.username:
            raise PaymentProviderError(f"The host for the collective {collective.slug} doesn't have a Stripe account set up")
        return account.username

    def get_or_create_customer_on_platform_account(self, payment_method, email: str | None = None, collective=None):
        if payment_method.customer_id:
            return stripe.Customer.retrieve(payment_method.customer_id)

        payload = {"source": payment_method.token}
        if email:
            payload["email"] = email
        if collective is not None:
            payload["description"] = f"{settings.WEBSITE_URL}/{collective.slug}"

        customer = stripe.Customer.create(**payload)
        payment_method.customer_id = customer.id
        self.payment_method_repo.save(payment_method)
        return customer

    def get_or_create_customer_on_host_account(self, host_stripe_account: str, payment_method, email: str | None = None):
        # Methods saved before customers were shared have no name and live on the host account
        if not payment_method.name:
            customer = stripe.Customer.retrieve(payment_method.customer_id, stripe_account=host_stripe_account)
            if customer:
                logger.info("pre_migration_customer_found", extra={"payment_method": str(payment_method.id)})
                return customer
            logger.info("pre_migration_customer_not_found", extra={"payment_method": str(payment_method.id)})
            return stripe.Customer.construct_from({"id": payment_method.customer_id}, stripe.api_key)

        customer_ids = payment_method.data.setdefault("customerIdForHost", {})
        if customer_ids.get(host_stripe_account):
            return stripe.Customer.retrieve(customer_ids[host_stripe_account], stripe_account=host_stripe_account)

        platform_customer = self.get_or_create_customer_on_platform_account(payment_method, email=email)
        if host_stripe_account == settings.STRIPE_ACCOUNT_ID:
            customer = platform_customer
        else:
            token = stripe.Token.create(customer=platform_customer.id, stripe_account=host_stripe_account)
            customer = stripe.Customer.create(source=token.id, email=email, stripe_account=host_stripe_account)

        customer_ids[host_stripe_account] = customer.id
        self.payment_method_repo.save(payment_method)
        return customer

    def create_charge_and_transactions(self, host_stripe_account: str, order, host_stripe_customer) -> Transaction:
        host = self.get_host(order)
        host_fee_share_percent, is_shared_revenue = self.get_shared_revenue(host, service="stripe")

        platform_fee = fees.get_platform_fee(
            order.total_amount,
            order,
            host,
            host_fee_share_percent=host_fee_share_percent,
        )
        platform_tip = order.data.get("platformFee")

        payment_intent = order.data.get("paymentIntent")
        if not payment_intent:
            create_payload = {
                "amount": order.total_amount,
                "currency": order.currency,
                "customer": host_stripe_customer.id,
                "description": order.description,
                "confirm": False,
                "confirmation_method": "manual",
                "metadata": {
                    "from": f"{settings.WEBSITE_URL}/{order.from_collective.slug}",
                    "to": f"{settings.WEBSITE_URL}/{order.collective.slug}",
                },
            }
            # No application fee when the charge lands on the platform account
            if platform_fee and host_stripe_account != settings.STRIPE_ACCOUNT_ID:
                create_payload["application_fee_amount"] = platform_fee
            if order.interval:
                create_payload["setup_future_usage"] = "off_session"
            elif not order.processed_at and order.data.get("savePaymentMethod"):
                create_payload["setup_future_usage"] = "on_session"

            sources = _get_field(host_stripe_customer, "sources")
            payment_method_id = _get_field(host_stripe_customer, "default_source")
            if not payment_method_id and sources and sources.data:
                payment_method_id = sources.data[0].id
            if payment_method_id:
                create_payload["payment_method"] = payment_method_id
            else:
                logger.info("stripe_customer_without_source", extra={"order_id": str(order.id)})

            payment_intent = stripe.PaymentIntent.create(stripe_account=host_stripe_account, **create_payload)

        payment_intent = stripe.PaymentIntent.confirm(payment_intent["id"], stripe_account=host_stripe_account)

        if payment_intent.next_action:
            order.data["paymentIntent"] = {"id": payment_intent.id, "status": payment_intent.status}
            self.order_repo.save(order)
            raise PaymentIntentRequiresAction(
                REQUIRES_ACTION_MESSAGE,
                stripe_account=host_stripe_account,
                stripe_response={"paymentIntent": _to_dict(payment_intent)},
            )

        if payment_intent.status != "succeeded":
            logger.error(
                "stripe_payment_intent_failed",
                extra={"order_id": str(order.id), "status": payment_intent.status},
            )
            raise PaymentProviderError(unknown_error_message())

        charge = stripe.Charge.retrieve(payment_intent.latest_charge, stripe_account=host_stripe_account)
        balance_transaction = stripe.BalanceTransaction.retrieve(
            charge.balance_transaction,
            stripe_account=host_stripe_account,
        )

        stripe_fees = extract_fees(balance_transaction)
        host_fee = fees.get_host_fee(balance_transaction.amount, order, host)
        platform_fee_in_host_currency = (platform_tip or 0) if is_shared_revenue else stripe_fees["application_fee"]

        payload = self.build_payload(
            order,
            type=TransactionType.CREDIT,
            kind=TransactionKind.CONTRIBUTION,
            host_currency=balance_transaction.currency.upper(),
            amount_in_host_currency=balance_transaction.amount,
            host_currency_fx_rate=balance_transaction.amount / order.total_amount,
            payment_processor_fee_in_host_currency=stripe_fees["stripe_fee"],
            host_fee_in_host_currency=host_fee,
            platform_fee_in_host_currency=platform_fee_in_host_currency,
            data={
                "charge": _to_dict(charge),
                "balanceTransaction": _to_dict(balance_transaction),
                "isFeesOnTop": order.data.get("isFeesOnTop"),
                "isSharedRevenue": is_shared_revenue,
                "settled": True,
                "platformFee": platform_fee,
                "platformTip": platform_tip,
                "hostFeeSharePercent": host_fee_share_percent,
            },
        )
        return self.ledger.create_from_payload(payload)

    def process_order(self, order) -> Transaction:
        host_stripe_account = self.get_host_stripe_account(order.collective)
        email = getattr(order.created_by_user, "email", None)
        host_stripe_customer = self.get_or_create_customer_on_host_account(
            host_stripe_account,
            order.payment_method,
            email=email,
        )

        try:
            transaction = self.create_charge_and_transactions(host_stripe_account, order, host_stripe_customer)
        except PaymentIntentRequiresAction:
            raise
        except (stripe.StripeError, PaymentProviderError) as e:
            message = getattr(e, "user_message", None) or getattr(e, "message", None) or str(e)
            rewritten = rewrite_error_message(message)
            if rewritten == unknown_error_message():
                logger.error(
                    "unknown_stripe_payment_error",
                    extra={"order_id": str(order.id), "error": message},
                    exc_info=True,
                )
            raise PaymentProviderError(rewritten) from e

        order.payment_method.confirm(timezone.now())
        self.payment_method_repo.save(order.payment_method)
        return transaction

    def _refund_context(self, transaction: Transaction) -> tuple[str, str]:
        charge_id = (transaction.data.get("charge") or {}).get("id")
        collective_id = (
            transaction.collective_id if transaction.type == TransactionType.CREDIT else transaction.from_collective_id
        )
        collective = self.collective_repo.get_by_id(collective_id)
        return charge_id, self.get_host_stripe_account(collective)

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        charge_id, host_stripe_account = self._refund_context(transaction)

        refund = stripe.Refund.create(
            charge=charge_id,
            refund_application_fee=(transaction.platform_fee_in_host_currency or 0) > 0,
            stripe_account=host_stripe_account,
        )
        charge = stripe.Charge.retrieve(charge_id, stripe_account=host_stripe_account)
        refund_balance = stripe.BalanceTransaction.retrieve(refund.balance_transaction, stripe_account=host_stripe_account)
        refund_fees = extract_fees(refund_balance)

        return self.ledger.create_refund_transaction(
            transaction,
            refund_fees["stripe_fee"],
            {
                **transaction.data,
                "refund": _to_dict(refund),
                "balanceTransaction": _to_dict(refund_balance),
                "charge": _to_dict(charge),
            },
            user_id,
        )

    def retrieve_charge_with_refund(self, charge_id: str, host_stripe_account: str) -> tuple:
        charge = stripe.Charge.retrieve(charge_id, stripe_account=host_stripe_account)
        if not charge:
            raise PaymentProviderError(f"charge id {charge_id} not found")
        refunds = _get_field(charge, "refunds")
        refund_id = refunds.data[0].id if refunds and refunds.data else None
        refund = stripe.Refund.retrieve(refund_id, stripe_account=host_stripe_account) if refund_id else None
        return charge, refund

    def refund_transaction_only_in_database(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        """Record a refund that was already made on the Stripe dashboard."""
        charge_id, host_stripe_account = self._refund_context(transaction)

        charge, refund = self.retrieve_charge_with_refund(charge_id, host_stripe_account)
        if not refund:
            raise PaymentProviderError("No refunds found in stripe.")
        refund_balance = stripe.BalanceTransaction.retrieve(refund.balance_transaction, stripe_account=host_stripe_account)
        refund_fees = extract_fees(refund_balance)

        return self.ledger.create_refund_transaction(
            transaction,
            refund_fees["stripe_fee"],
            {
                **transaction.data,
                "charge": _to_dict(charge),
                "refund": _to_dict(refund),
                "balanceTransaction": _to_dict(refund_balance),
            },
            user_id,
        )

    def setup_credit_card(self, payment_method, email: str | None = None, collective=None):
        """Confirm a card for later off-session use."""
        platform_customer = self.get_or_create_customer_on_platform_account(
            payment_method,
            email=email,
            collective=collective,
        )
        card_id = platform_customer.sources.data[0].id

        setup_intent = None
        saved_intent = payment_method.data.get("setupIntent")
        if saved_intent:
            setup_intent = stripe.SetupIntent.retrieve(saved_intent["id"])
        if not setup_intent:
            setup_intent = stripe.SetupIntent.create(
                customer=platform_customer.id,
                payment_method=card_id,
                confirm=True,
            )

        if (
            not saved_intent
            or saved_intent.get("id") != setup_intent.id
            or saved_intent.get("status") != setup_intent.status
        ):
            payment_method.data["setupIntent"] = {"id": setup_intent.id, "status": setup_intent.status}
            self.payment_method_repo.save(payment_method)

        if setup_intent.next_action:
            raise PaymentIntentRequiresAction(
                "Setup Intent require action",
                stripe_response={"setupIntent": _to_dict(setup_intent)},
            )

        return payment_method

    def webhook(self, event) -> None:
        """Stripe events are acknowledged without processing."""
        logger.info("stripe_webhook_received", extra={"event_id": event.get("id"), "event_type": event.get("type")})
