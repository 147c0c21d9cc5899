"""
Unit tests for domain models.
"""
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

from django.test import TestCase

from funding.domain import fees
from funding.domain.collective import Collective, CollectiveType
from funding.domain.order import Order, OrderStatus, generate_description, validate_payment
from funding.domain.payment_method import (
    PaymentMethod,
    PaymentMethodLegacyType,
    get_legacy_payment_method_type,
    get_service_type_from_legacy_payment_method_type,
    is_provider,
)
from funding.domain.plans import get_host_fee_share_percent, get_host_plan
from funding.domain.settlement import (
    SettlementRow,
    SettlementSource,
    apply_shared_revenue,
    fixed_fee_item,
    group_items,
    previous_month_bounds,
    previous_month_label,
    rows_to_csv,
    total_amount_charged,
    total_amount_credited,
)
from funding.domain.subscription import add_months, get_next_charge_and_period_start_dates
from funding.domain.transaction import (
    Transaction,
    TransactionKind,
    TransactionType,
    build_double_entry,
    build_refund,
    net_amount,
    split_platform_tip,
)


def make_order(payment_method=None, data=None, collective=None, **values):
    order = Order(collective_id=uuid4(), from_collective_id=uuid4(), data=data, **values)
    order.collective = collective or Collective(slug="webpack", name="Webpack")
    order.payment_method = payment_method
    return order


class FeeRoundingTest(TestCase):
    """Tests for fee rounding."""

    def test_calc_fee_rounds_half_up(self):
        """Test that a fee of half a cent is rounded up."""
        self.assertEqual(fees.calc_fee(100, 3.5), 4)
        self.assertEqual(fees.calc_fee(10000, 5), 500)

    def test_round_half_up_on_negative_values(self):
        """Test that negative halves go toward zero."""
        self.assertEqual(fees.round_half_up(2.5), 3)
        self.assertEqual(fees.round_half_up(-2.5), -2)
        self.assertEqual(fees.round_half_up(-2.6), -3)

    def test_first_number_accepts_zero(self):
        """Test that 0 is a valid percent while None is skipped."""
        self.assertEqual(fees.first_number([None, 0, 5]), 0)
        self.assertIsNone(fees.first_number([None, "5", True]))


class PlatformFeePercentTest(TestCase):
    """Tests for the platform fee percent waterfall."""

    def test_order_override_wins(self):
        """Test that the percent stored on the order comes first."""
        order = make_order(PaymentMethod(service="stripe", type="creditcard"), data={"platformFeePercent": 0})
        self.assertEqual(fees.get_platform_fee_percent(order, None, 5), 0)

    def test_bank_transfer_uses_host_setting(self):
        """Test that bank transfers read the host bank transfer percent."""
        host = Collective(slug="host", data={"bankTransfersPlatformFeePercent": 2})
        order = make_order(PaymentMethod(service="opencollective", type="manual"))
        self.assertEqual(fees.get_platform_fee_percent(order, host, 5), 2)

    def test_bank_transfer_defaults_to_zero(self):
        """Test that bank transfers are free of platform fees by default."""
        order = make_order(PaymentMethod(service="opencollective", type="manual"))
        self.assertEqual(fees.get_platform_fee_percent(order, Collective(slug="host"), 5), 0)

    def test_credit_card_falls_back_to_default(self):
        """Test that a card payment with no override uses the default percent."""
        order = make_order(PaymentMethod(service="stripe", type="creditcard"))
        self.assertEqual(fees.get_platform_fee_percent(order, Collective(slug="host"), 5), 5)

    def test_collective_percent_before_default(self):
        """Test that the collective percent wins over the default."""
        collective = Collective(slug="webpack", platform_fee_percent=3)
        order = make_order(PaymentMethod(service="paypal", type="payment"), collective=collective)
        self.assertEqual(fees.get_platform_fee_percent(order, Collective(slug="host"), 5), 3)


class HostFeeTest(TestCase):
    """Tests for host fees."""

    def test_host_account_pays_no_host_fee(self):
        """Test that contributions to the host itself have no host fee."""
        collective = Collective(slug="host", is_host_account=True, host_fee_percent=10)
        order = make_order(PaymentMethod(service="stripe", type="creditcard"), collective=collective)
        self.assertEqual(fees.get_host_fee_percent(order, collective, 5), 0)

    def test_credit_card_host_percent(self):
        """Test that the host credit card percent is used for stripe payments."""
        host = Collective(slug="host", data={"creditCardHostFeePercent": 3})
        order = make_order(PaymentMethod(service="stripe", type="creditcard"))
        self.assertEqual(fees.get_host_fee_percent(order, host, 5), 3)

    def test_balance_payments_have_no_host_fee(self):
        """Test that paying with an account balance is free of host fees."""
        collective = Collective(slug="webpack", host_fee_percent=10)
        order = make_order(PaymentMethod(service="opencollective", type="collective"), collective=collective)
        self.assertEqual(fees.get_host_fee_percent(order, Collective(slug="host"), 5), 0)

    def test_host_fee_excludes_platform_tip(self):
        """Test that the host fee is computed on the amount without the tip."""
        collective = Collective(slug="webpack", host_fee_percent=10)
        order = make_order(
            PaymentMethod(service="stripe", type="creditcard"),
            data={"isFeesOnTop": True, "platformFee": 1000},
            collective=collective,
            total_amount=10000,
        )
        self.assertEqual(fees.get_host_fee(10000, order, Collective(slug="host"), 5), 900)


class PlatformFeeTest(TestCase):
    """Tests for the platform fee amount."""

    def test_percent_fee(self):
        """Test the default percent fee on a contribution."""
        order = make_order(PaymentMethod(service="stripe", type="creditcard"), total_amount=10000)
        self.assertEqual(fees.get_platform_fee(10000, order, Collective(slug="host"), 5, 5), 500)

    def test_fees_on_top_is_the_tip(self):
        """Test that a fees-on-top order pays its tip as platform fee."""
        order = make_order(
            PaymentMethod(service="stripe", type="creditcard"),
            data={"isFeesOnTop": True, "platformFee": 1000},
            total_amount=11000,
        )
        self.assertEqual(fees.get_platform_fee(11000, order, Collective(slug="host"), 5, 5), 1000)

    def test_tip_combined_with_shared_revenue(self):
        """Test that shared revenue is added to the tip."""
        collective = Collective(slug="webpack", host_fee_percent=10)
        order = make_order(
            PaymentMethod(service="stripe", type="creditcard"),
            data={"isFeesOnTop": True, "platformFee": 1000},
            collective=collective,
            total_amount=10000,
        )
        host_plan = {"hostFeeSharePercent": 15}
        # host fee is 900, 15% of it is 135
        self.assertEqual(fees.get_platform_fee(10000, order, Collective(slug="host"), 5, 5, host_plan=host_plan), 1135)


class TransactionTest(TestCase):
    """Tests for ledger entry helpers."""

    def test_net_amount(self):
        """Test that fees are removed from the amount."""
        transaction = Transaction(
            amount_in_host_currency=10000,
            host_fee_in_host_currency=-500,
            platform_fee_in_host_currency=-500,
            payment_processor_fee_in_host_currency=-300,
        )
        self.assertEqual(net_amount(transaction), 8700)

    def test_net_amount_converts_to_collective_currency(self):
        """Test that the net amount is divided by the fx rate."""
        transaction = Transaction(
            amount_in_host_currency=20000,
            host_fee_in_host_currency=-1000,
            host_currency_fx_rate=2,
        )
        self.assertEqual(net_amount(transaction), 9500)

    def test_double_entry_mirrors_payload(self):
        """Test that the opposite entry debits the sending account."""
        collective_id, from_collective_id, from_host_id = uuid4(), uuid4(), uuid4()
        payload = Transaction(
            collective_id=collective_id,
            from_collective_id=from_collective_id,
            amount=10000,
            amount_in_host_currency=10000,
            host_fee_in_host_currency=-1000,
        )

        debit, credit = build_double_entry(payload, from_host_id)

        self.assertEqual(credit.type, TransactionType.CREDIT)
        self.assertEqual(credit.collective_id, collective_id)
        self.assertEqual(credit.net_amount_in_collective_currency, 9000)
        self.assertEqual(debit.type, TransactionType.DEBIT)
        self.assertEqual(debit.collective_id, from_collective_id)
        self.assertEqual(debit.host_collective_id, from_host_id)
        self.assertEqual(debit.amount, -9000)
        self.assertEqual(debit.net_amount_in_collective_currency, -10000)
        self.assertEqual(debit.transaction_group, credit.transaction_group)

    def test_double_entry_of_negative_payload(self):
        """Test that a negative payload is the DEBIT entry, written first."""
        payload = Transaction(collective_id=uuid4(), from_collective_id=uuid4(), amount=-500, amount_in_host_currency=-500)
        debit, credit = build_double_entry(payload, None)
        self.assertEqual(debit.collective_id, payload.collective_id)
        self.assertEqual(credit.collective_id, payload.from_collective_id)
        self.assertEqual(credit.amount, 500)

    def test_split_platform_tip(self):
        """Test that the tip is removed from the contribution with its share of processor fee."""
        platform_id = uuid4()
        payload = Transaction(
            collective_id=uuid4(),
            from_collective_id=uuid4(),
            amount=11000,
            amount_in_host_currency=11000,
            payment_processor_fee_in_host_currency=-330,
            platform_fee_in_host_currency=-1000,
            data={"isFeesOnTop": True},
        )

        tip, contribution = split_platform_tip(payload, 1000, platform_id)

        self.assertEqual(tip.kind, TransactionKind.PLATFORM_TIP)
        self.assertEqual(tip.collective_id, platform_id)
        self.assertEqual(tip.payment_processor_fee_in_host_currency, -30)
        self.assertEqual(tip.net_amount_in_collective_currency, 970)
        self.assertEqual(contribution.amount, 10000)
        self.assertEqual(contribution.payment_processor_fee_in_host_currency, -300)
        self.assertEqual(contribution.platform_fee_in_host_currency, 0)
        self.assertEqual(contribution.net_amount_in_collective_currency, 9700)

    def test_refund_when_processor_keeps_its_fee(self):
        """Test that the host covers the processor fee so the refund is complete."""
        transaction = Transaction(
            amount=10000,
            amount_in_host_currency=10000,
            host_fee_in_host_currency=-500,
            payment_processor_fee_in_host_currency=-300,
            description="Financial contribution to Webpack",
            kind=TransactionKind.CONTRIBUTION,
            data={"isFeesOnTop": False},
        )

        refund = build_refund(transaction, 0, None, None)

        self.assertTrue(refund.is_refund)
        self.assertEqual(refund.amount, -10000)
        self.assertEqual(refund.host_fee_in_host_currency, 800)
        self.assertEqual(refund.payment_processor_fee_in_host_currency, 0)
        self.assertEqual(refund.net_amount_in_collective_currency, -9200)
        self.assertEqual(refund.description, 'Refund of "Financial contribution to Webpack"')
        self.assertIn("isFeesOnTop", refund.data)

    def test_refund_with_processor_fee_returned(self):
        """Test that a returned processor fee stays on the refund."""
        transaction = Transaction(amount=10000, amount_in_host_currency=10000, payment_processor_fee_in_host_currency=-300)
        refund = build_refund(transaction, 300, {"refund": {"id": "re_1"}}, None)
        self.assertEqual(refund.payment_processor_fee_in_host_currency, 300)
        self.assertEqual(refund.host_fee_in_host_currency, 0)
        self.assertEqual(refund.data["refund"]["id"], "re_1")


class OrderTest(TestCase):
    """Tests for Order aggregate."""

    def test_new_order(self):
        """Test creating an order."""
        order = Order(total_amount=1000)
        self.assertEqual(order.status, OrderStatus.NEW)
        self.assertEqual(order.platform_tip, 0)

    def test_negative_amount_fails(self):
        """Test that a negative amount raises error."""
        with self.assertRaises(ValueError):
            Order(total_amount=-1)

    def test_mark_paid(self):
        """Test paying a pending order."""
        order = Order(total_amount=1000, status=OrderStatus.PENDING, data={"paymentIntent": {"id": "pi_1"}})
        processed_at = datetime.now(tz=timezone.utc)
        order.mark_paid(processed_at)
        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.processed_at, processed_at)
        self.assertNotIn("paymentIntent", order.data)

    def test_processed_order_cannot_be_paid_again(self):
        """Test that a processed order cannot be marked as paid."""
        order = Order(
            total_amount=1000,
            status=OrderStatus.PAID,
            processed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        with self.assertRaises(ValueError) as context:
            order.mark_paid(datetime.now(tz=timezone.utc))
        self.assertIn("has already been processed", str(context.exception))

    def test_unprocessed_order_is_paid_whatever_its_status(self):
        order = Order(total_amount=1000, status=OrderStatus.CANCELLED)
        order.mark_paid(datetime.now(tz=timezone.utc))
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_ensure_not_processed(self):
        """Test that a processed order cannot be executed again."""
        order = Order(total_amount=1000, processed_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        with self.assertRaises(ValueError) as context:
            order.ensure_not_processed()
        self.assertIn("has already been processed", str(context.exception))

    def test_only_new_orders_become_pending(self):
        """Test that a paid order cannot go back to pending."""
        order = Order(total_amount=1000, status=OrderStatus.PAID)
        with self.assertRaises(ValueError) as context:
            order.mark_pending()
        self.assertIn("Can only set new orders as pending", str(context.exception))

    def test_activate_requires_paid_order(self):
        """Test that only paid orders get a subscription."""
        order = Order(total_amount=1000, status=OrderStatus.PENDING)
        with self.assertRaises(ValueError):
            order.activate(uuid4())

    def test_expire_pending_order(self):
        """Test expiring a pending order."""
        order = Order(total_amount=1000, status=OrderStatus.PENDING)
        order.mark_expired()
        self.assertEqual(order.status, OrderStatus.EXPIRED)

    def test_validate_payment(self):
        """Test amount and interval validation."""
        validate_payment(1000, "month")
        with self.assertRaises(ValueError) as context:
            validate_payment(1000, "week")
        self.assertIn("Interval should be null, month or year.", str(context.exception))
        with self.assertRaises(ValueError) as context:
            validate_payment(0, None)
        self.assertIn("payment.amount missing", str(context.exception))

    def test_generate_description(self):
        """Test order descriptions."""
        collective = Collective(slug="webpack", name="Webpack")
        event = Collective(slug="meetup", name="Meetup", type=CollectiveType.EVENT)
        tier = type("Tier", (), {"name": "Gold"})()

        self.assertEqual(generate_description(collective, 1000, "month"), "Monthly financial contribution to Webpack")
        self.assertEqual(generate_description(collective, 1000, None, tier), "Financial contribution to Webpack (Gold)")
        self.assertEqual(generate_description(event, 1000, None), "Registration to Meetup")

    def test_activity_with_platform_tip(self):
        """Test that activities report the amount without the tip."""
        order = Order(total_amount=11000, data={"isFeesOnTop": True, "platformFee": 1000})
        activity = order.activity()
        self.assertEqual(activity["totalAmount"], 10000)
        self.assertEqual(activity["platformTipAmount"], 1000)
        self.assertEqual(activity["chargeAmount"], 11000)


class PaymentMethodTest(TestCase):
    """Tests for payment method helpers."""

    def test_is_provider(self):
        """Test matching payment methods by fully qualified name."""
        self.assertTrue(is_provider("stripe.creditcard", PaymentMethod(service="stripe", type="creditcard")))
        self.assertTrue(is_provider("opencollective.default", PaymentMethod(service="opencollective")))
        self.assertFalse(is_provider("opencollective.manual", PaymentMethod(service="opencollective", type="host")))

    def test_legacy_type(self):
        """Test mapping service and type to legacy names."""
        self.assertEqual(get_legacy_payment_method_type("stripe", "creditcard"), PaymentMethodLegacyType.CREDIT_CARD)
        self.assertEqual(get_legacy_payment_method_type("opencollective", "host"), PaymentMethodLegacyType.ADDED_FUNDS)
        self.assertIsNone(get_legacy_payment_method_type("opencollective", "manual"))

    def test_service_type_from_legacy_type(self):
        """Test mapping legacy names back to service and type."""
        self.assertEqual(
            get_service_type_from_legacy_payment_method_type("BANK_TRANSFER"),
            {"service": "opencollective", "type": "manual"},
        )
        self.assertEqual(
            get_service_type_from_legacy_payment_method_type(PaymentMethodLegacyType.PAYPAL),
            {"service": "paypal", "type": "payment"},
        )
        self.assertIsNone(get_service_type_from_legacy_payment_method_type("BITCOIN"))

    def test_manual_paid(self):
        payment_method = PaymentMethod.manual_paid()
        self.assertTrue(payment_method.paid)
        self.assertEqual(payment_method.fqn, "opencollective.manual")


class SubscriptionScheduleTest(TestCase):
    """Tests for recurring contribution dates."""

    def test_new_monthly_subscription_starts_next_month(self):
        """Test that a new monthly subscription is charged on the 1st of next month."""
        dates = get_next_charge_and_period_start_dates("new", "month", datetime(2024, 1, 10, 14, 30, tzinfo=timezone.utc))
        self.assertEqual(dates["next_charge_date"], datetime(2024, 2, 1, tzinfo=timezone.utc))
        self.assertEqual(dates["next_period_start"], dates["next_charge_date"])

    def test_new_monthly_subscription_after_the_15th(self):
        """Test that contributions after the 15th skip a month."""
        dates = get_next_charge_and_period_start_dates("new", "month", datetime(2024, 1, 20, tzinfo=timezone.utc))
        self.assertEqual(dates["next_charge_date"], datetime(2024, 3, 1, tzinfo=timezone.utc))

    def test_new_yearly_subscription(self):
        dates = get_next_charge_and_period_start_dates("new", "year", datetime(2024, 5, 20, tzinfo=timezone.utc))
        self.assertEqual(dates["next_charge_date"], datetime(2025, 5, 1, tzinfo=timezone.utc))

    def test_successful_charge_moves_period(self):
        """Test that a successful charge starts the next period."""
        dates = get_next_charge_and_period_start_dates(
            "success",
            "month",
            datetime(2024, 1, 10, tzinfo=timezone.utc),
            next_period_start=datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        self.assertEqual(dates["next_charge_date"], datetime(2024, 3, 1, tzinfo=timezone.utc))

    def test_failed_charge_is_retried_later(self):
        """Test that a failed charge is retried in two days."""
        dates = get_next_charge_and_period_start_dates("failure", "month", datetime(2024, 1, 10, tzinfo=timezone.utc))
        self.assertNotIn("next_period_start", dates)
        self.assertGreater(dates["next_charge_date"], datetime.now(tz=timezone.utc) + timedelta(days=1))

    def test_add_months_clamps_day(self):
        self.assertEqual(add_months(datetime(2024, 1, 31), 1), datetime(2024, 2, 29))
        self.assertEqual(add_months(datetime(2024, 12, 15), 1), datetime(2025, 1, 15))


def make_row(source, amount, transaction_id="t1", data=None):
    return SettlementRow(
        created_at=datetime(2024, 1, 5, tzinfo=timezone.utc),
        description="Financial contribution to Webpack",
        amount=amount,
        currency="USD",
        collective_id=None,
        collective_slug="webpack",
        host_collective_id="host-1",
        host_name="Host",
        order_id=None,
        transaction_id=transaction_id,
        transaction_group=None,
        payment_service="opencollective",
        source_payment_service=None,
        source=source,
        plan=None,
        charged_host_id="host-1",
        data=data or {},
    )


class SettlementTest(TestCase):
    """Tests for monthly settlement helpers."""

    def test_previous_month_bounds(self):
        """Test that January runs cover December of the previous year."""
        self.assertEqual(previous_month_bounds(date(2024, 1, 15)), (date(2023, 12, 1), date(2024, 1, 1)))

    def test_previous_month_label(self):
        self.assertEqual(previous_month_label(date(2024, 3, 1)), "February")
        self.assertEqual(previous_month_label(date(2024, 3, 1), with_year=True), "February-2024")

    def test_shared_revenue_scaled_to_platform_share(self):
        """Test that shared revenue rows keep only the platform share of the host fee."""
        rows = [
            make_row(SettlementSource.SHARED_REVENUE, 1000),
            make_row(SettlementSource.SHARED_REVENUE, 1000, data={"hostFeeSharePercent": 20}),
            make_row(SettlementSource.PLATFORM_TIPS, 1000),
        ]
        amounts = [row.amount for row in apply_shared_revenue(rows, 15)]
        self.assertEqual(amounts, [150, 200, 1000])

    def test_totals(self):
        """Test that shared revenue and fixed fees are charged but not credited."""
        incurred_at = datetime(2024, 2, 1, tzinfo=timezone.utc)
        items = group_items(
            [
                make_row(SettlementSource.PLATFORM_TIPS, 500),
                make_row(SettlementSource.PLATFORM_TIPS, 700),
                make_row(SettlementSource.SHARED_REVENUE, 300),
            ],
            incurred_at,
        )
        items.append(fixed_fee_item(2, 1000, incurred_at))

        self.assertEqual([item.description for item in items][:2], ["Platform Tips", "Shared Revenue"])
        self.assertEqual(total_amount_credited(items), 1200)
        self.assertEqual(total_amount_charged(items), 3500)

    def test_no_fixed_fee_without_collectives(self):
        self.assertIsNone(fixed_fee_item(0, 1000, datetime(2024, 2, 1, tzinfo=timezone.utc)))

    def test_csv_export(self):
        """Test the CSV attached to settlement expenses."""
        content = rows_to_csv([make_row(SettlementSource.PLATFORM_FEES, 500, transaction_id="abc")])
        lines = content.strip().splitlines()
        self.assertEqual(
            lines[0],
            '"createdAt","description","CollectiveSlug","amount","currency","OrderId","TransactionId","PaymentService","source"',
        )
        self.assertIn('"abc"', lines[1])
        self.assertIn('"Platform Fees"', lines[1])


class PlanTest(TestCase):
    """Tests for host plans."""

    def test_shared_revenue_plan(self):
        host = Collective(slug="host", plan="start-plan-2021")
        plan = get_host_plan(host)
        self.assertEqual(plan["name"], "start-plan-2021")
        self.assertEqual(plan["hostFeeSharePercent"], 15)

    def test_host_override(self):
        """Test that host data overrides the plan terms."""
        host = Collective(slug="host", plan="grow-plan-2021", data={"plan": {"hostFeeSharePercent": 20}})
        self.assertEqual(get_host_plan(host)["hostFeeSharePercent"], 20)

    def test_unknown_plan_uses_default(self):
        self.assertEqual(get_host_plan(Collective(slug="host", plan="legacy"))["name"], "default")

    def test_credit_card_share_percent(self):
        """Test that card payments may have their own share percent."""
        plan = {"hostFeeSharePercent": 15, "creditCardHostFeeSharePercent": 5}
        self.assertEqual(get_host_fee_share_percent(plan, "stripe"), 5)
        self.assertEqual(get_host_fee_share_percent(plan, "paypal"), 15)


class CollectiveTest(TestCase):
    """Tests for Collective entity."""

    def test_charged_host_of_active_host(self):
        host = Collective(slug="host", is_active=True)
        self.assertEqual(host.charged_host_id, str(host.id))

    def test_charged_host_of_inactive_host(self):
        """Test that an inactive host is charged through its own host."""
        host = Collective(slug="host", is_active=False, settings={"hostCollective": {"id": "other"}})
        self.assertEqual(host.charged_host_id, "other")

    def test_is_host(self):
        self.assertTrue(Collective(type=CollectiveType.ORGANIZATION, is_host_account=True).is_host)
        self.assertFalse(Collective(type=CollectiveType.COLLECTIVE, is_host_account=True).is_host)
