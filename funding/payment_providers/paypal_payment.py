"""
PayPal checkout: the contributor approves a PayPal order in the browser, we
capture it on the host's PayPal account.
"""
from __future__ import annotations

import logging
from uuid import UUID

from funding.domain.transaction import Transaction, TransactionKind, TransactionType
from funding.payment_providers.base import PaymentProvider, PaymentProviderError
from funding.services import fees, paypal

logger = logging.getLogger(__name__)


def _breakdown_amount(breakdown: dict, name: str) -> int:
    value = (breakdown.get(name) or {}).get("value")
    return paypal.paypal_amount_to_cents(value) if value else 0


class PaypalPaymentProvider(PaymentProvider):
    features = {"recurring": False, "wait_to_charge": False}

    def process_order(self, order) -> Transaction:
        paypal_order_id = order.payment_method.data.get("orderId")
        if not paypal_order_id:
            raise PaymentProviderError("No PayPal order to capture on this payment method")

        host = self.get_host(order)
        result = paypal.paypal_request_v2(f"checkout/orders/{paypal_order_id}/capture", host, "POST")
        capture = result["purchase_units"][0]["payments"]["captures"][0]
        if capture.get("status") != "COMPLETED":
            logger.error(
                "paypal_capture_failed",
                extra={"order_id": str(order.id), "status": capture.get("status")},
            )
            raise PaymentProviderError(f"PayPal capture failed with status {capture.get('status')}")

        breakdown = capture.get("seller_receivable_breakdown") or {}
        gross = breakdown.get("gross_amount") or capture["amount"]
        amount_in_host_currency = paypal.paypal_amount_to_cents(gross["value"])
        host_fee_share_percent, is_shared_revenue = self.get_shared_revenue(host, service="paypal")
        platform_tip = order.platform_tip

        if is_shared_revenue:
            platform_fee = platform_tip
        else:
            platform_fee = fees.get_platform_fee(amount_in_host_currency, order, host)

        payload = self.build_payload(
            order,
            type=TransactionType.CREDIT,
            kind=TransactionKind.CONTRIBUTION,
            host_currency=gross["currency_code"],
            amount_in_host_currency=amount_in_host_currency,
            host_currency_fx_rate=amount_in_host_currency / order.total_amount,
            payment_processor_fee_in_host_currency=_breakdown_amount(breakdown, "paypal_fee"),
            host_fee_in_host_currency=fees.get_host_fee(amount_in_host_currency, order, host),
            platform_fee_in_host_currency=platform_fee,
            data={
                "capture": capture,
                "isFeesOnTop": order.is_fees_on_top,
                "isSharedRevenue": is_shared_revenue,
                "platformTip": platform_tip,
                "hostFeeSharePercent": host_fee_share_percent,
            },
        )
        return self.ledger.create_from_payload(payload)

    def refund_transaction(self, transaction: Transaction, user_id: UUID | None = None) -> Transaction:
        capture_id = (transaction.data.get("capture") or {}).get("id")
        if not capture_id:
            raise PaymentProviderError("No PayPal capture to refund on this transaction")

        collective_id = (
            transaction.collective_id if transaction.type == TransactionType.CREDIT else transaction.from_collective_id
        )
        host = self.collective_repo.get_host(self.collective_repo.get_by_id(collective_id))
        refund = paypal.paypal_request_v2(f"payments/captures/{capture_id}/refund", host, "POST", body={})
        refunded_fee = _breakdown_amount(refund.get("seller_payable_breakdown") or {}, "paypal_fee")

        return self.ledger.create_refund_transaction(
            transaction,
            refunded_fee,
            {**transaction.data, "refund": refund},
            user_id,
        )
