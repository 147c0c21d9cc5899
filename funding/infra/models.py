from __future__ import annotations

from uuid import uuid4

from django.db import models


COLLECTIVE_TYPE = (
    ("USER", "User"),
    ("ORGANIZATION", "Organization"),
    ("COLLECTIVE", "Collective"),
    ("EVENT", "Event"),
    ("FUND", "Fund"),
    ("PROJECT", "Project"),
)

TRANSACTION_KIND = (
    ("CONTRIBUTION", "Contribution"),
    ("ADDED_FUNDS", "Added funds"),
    ("PLATFORM_TIP", "Platform tip"),
    ("EXPENSE", "Expense"),
    ("HOST_FEE", "Host fee"),
    ("PLATFORM_FEE", "Platform fee"),
    ("PAYMENT_PROCESSOR_FEE", "Payment processor fee"),
    ("PREPAID_PAYMENT_METHOD", "Prepaid payment method"),
)

OPERATION_TYPE = (
    ("STRIPE_WEBHOOK", "Stripe webhook"),
    ("PAYPAL_WEBHOOK", "PayPal webhook"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class CollectiveORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    slug = models.SlugField(max_length=255, unique=True)
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=20, choices=COLLECTIVE_TYPE, default="COLLECTIVE")
    host = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="hosted_collectives",
    )
    parent = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="children",
    )
    is_host_account = models.BooleanField(default=False)
    is_active = models.BooleanField(default=False)
    currency = models.CharField(max_length=3, default="USD")
    host_fee_percent = models.FloatField(null=True, blank=True)
    platform_fee_percent = models.FloatField(null=True, blank=True)
    plan = models.CharField(max_length=100, null=True, blank=True)
    twitter_handle = models.CharField(max_length=100, null=True, blank=True)
    data = models.JSONField(default=dict, blank=True)
    settings = models.JSONField(default=dict, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("host",)),
            models.Index(fields=("type", "is_host_account")),
        ]

    def __str__(self):
        return self.slug


class UserORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    email = models.EmailField(unique=True)
    collective = models.OneToOneField(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="user",
    )

    def __str__(self):
        return self.email


class TierORM(TimeStampedModel):
    TIER_TYPE_CHOICES = (
        ("TIER", "Tier"),
        ("MEMBERSHIP", "Membership"),
        ("DONATION", "Donation"),
        ("TICKET", "Ticket"),
        ("SERVICE", "Service"),
        ("PRODUCT", "Product"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="tiers",
    )
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255)
    type = models.CharField(max_length=20, choices=TIER_TYPE_CHOICES, default="TIER")
    amount = models.IntegerField(null=True, blank=True)

    @property
    def info(self) -> dict:
        return {"id": str(self.id), "name": self.name, "slug": self.slug, "type": self.type, "amount": self.amount}


class PaymentMethodORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_methods",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    source_payment_method = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    service = models.CharField(max_length=50, default="opencollective")
    type = models.CharField(max_length=50, null=True, blank=True)
    name = models.CharField(max_length=255, null=True, blank=True)
    token = models.CharField(max_length=255, null=True, blank=True)
    customer_id = models.CharField(max_length=255, null=True, blank=True)
    data = models.JSONField(default=dict, blank=True)
    saved = models.BooleanField(default=False)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    expiry_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("collective",)),
            models.Index(fields=("service", "type")),
        ]


class SubscriptionORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    amount = models.IntegerField()
    interval = models.CharField(max_length=10)
    currency = models.CharField(max_length=3)
    is_active = models.BooleanField(default=False)
    activated_at = models.DateTimeField(null=True, blank=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)
    next_charge_date = models.DateTimeField(null=True, blank=True)
    next_period_start = models.DateTimeField(null=True, blank=True)
    charge_number = models.IntegerField(null=True, blank=True)


class OrderORM(TimeStampedModel):

    STATUS_CHOICES = (
        ("NEW", "New"),
        ("REQUIRE_CLIENT_CONFIRMATION", "Requires client confirmation"),
        ("PENDING", "Pending"),
        ("PAID", "Paid"),
        ("ACTIVE", "Active"),
        ("CANCELLED", "Cancelled"),
        ("EXPIRED", "Expired"),
        ("ERROR", "Error"),
        ("REJECTED", "Rejected"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        related_name="orders",
    )
    from_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="outgoing_orders",
    )
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    tier = models.ForeignKey(
        TierORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    payment_method = models.ForeignKey(
        PaymentMethodORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    subscription = models.ForeignKey(
        SubscriptionORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    quantity = models.IntegerField(default=1)
    currency = models.CharField(max_length=3, default="USD")
    total_amount = models.IntegerField()
    tax_amount = models.IntegerField(null=True, blank=True)
    description = models.CharField(max_length=255, default="", blank=True)
    public_message = models.CharField(max_length=255, null=True, blank=True)
    private_message = models.CharField(max_length=255, null=True, blank=True)
    interval = models.CharField(max_length=10, null=True, blank=True)
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default="NEW")
    data = models.JSONField(default=dict, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("collective", "status")),
            models.Index(fields=("from_collective",)),
        ]


class TransactionORM(TimeStampedModel):
    TRANSACTION_TYPE_CHOICES = (
        ("DEBIT", "Debit"),
        ("CREDIT", "Credit"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    type = models.CharField(max_length=10, choices=TRANSACTION_TYPE_CHOICES)
    kind = models.CharField(max_length=30, choices=TRANSACTION_KIND, null=True, blank=True)
    transaction_group = models.UUIDField()
    description = models.CharField(max_length=255, default="", blank=True)
    amount = models.IntegerField()
    currency = models.CharField(max_length=3)
    amount_in_host_currency = models.IntegerField()
    host_currency = models.CharField(max_length=3, null=True, blank=True)
    host_currency_fx_rate = models.FloatField(default=1)
    host_fee_in_host_currency = models.IntegerField(default=0)
    platform_fee_in_host_currency = models.IntegerField(default=0)
    payment_processor_fee_in_host_currency = models.IntegerField(default=0)
    tax_amount = models.IntegerField(null=True, blank=True)
    net_amount_in_collective_currency = models.IntegerField()
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    from_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        null=True,
        related_name="+",
    )
    host_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    using_gift_card_from_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    payment_method = models.ForeignKey(
        PaymentMethodORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    expense = models.ForeignKey(
        "ExpenseORM",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    refund_transaction = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    is_refund = models.BooleanField(default=False)
    is_debt = models.BooleanField(null=True, blank=True)
    data = models.JSONField(default=dict, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("transaction_group",)),
            models.Index(fields=("collective", "created_at")),
            models.Index(fields=("host_collective", "created_at")),
            models.Index(fields=("kind", "type", "created_at")),
        ]


class TransactionSettlementORM(TimeStampedModel):
    STATUS_CHOICES = (
        ("OWED", "Owed"),
        ("INVOICED", "Invoiced"),
        ("SETTLED", "Settled"),
    )

    transaction_group = models.UUIDField()
    kind = models.CharField(max_length=30, choices=TRANSACTION_KIND)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES)
    expense = models.ForeignKey(
        "ExpenseORM",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="settlements",
    )
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = [("transaction_group", "kind")]
        indexes = [
            models.Index(fields=("status",)),
        ]


class PayoutMethodORM(TimeStampedModel):
    TYPE_CHOICES = (
        ("OTHER", "Other"),
        ("BANK_ACCOUNT", "Bank account"),
        ("PAYPAL", "PayPal"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="payout_methods",
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    name = models.CharField(max_length=255, null=True, blank=True)
    data = models.JSONField(default=dict, blank=True)
    is_saved = models.BooleanField(default=True)


class ExpenseORM(TimeStampedModel):
    TYPE_CHOICES = (
        ("INVOICE", "Invoice"),
        ("RECEIPT", "Receipt"),
        ("FUNDING_REQUEST", "Funding request"),
        ("UNCLASSIFIED", "Unclassified"),
    )
    STATUS_CHOICES = (
        ("DRAFT", "Draft"),
        ("PENDING", "Pending"),
        ("APPROVED", "Approved"),
        ("REJECTED", "Rejected"),
        ("PROCESSING", "Processing"),
        ("ERROR", "Error"),
        ("PAID", "Paid"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="expenses",
    )
    from_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.PROTECT,
        related_name="submitted_expenses",
    )
    payout_method = models.ForeignKey(
        PayoutMethodORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="expenses",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    amount = models.IntegerField()
    currency = models.CharField(max_length=3)
    description = models.CharField(max_length=255)
    incurred_at = models.DateTimeField()
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="PENDING")
    data = models.JSONField(default=dict, blank=True)


class ExpenseItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    expense = models.ForeignKey(
        ExpenseORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    amount = models.IntegerField()
    description = models.CharField(max_length=255)
    incurred_at = models.DateTimeField()


class ExpenseAttachedFileORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    expense = models.ForeignKey(
        ExpenseORM,
        on_delete=models.CASCADE,
        related_name="attached_files",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    url = models.CharField(max_length=2048)


class ConnectedAccountORM(TimeStampedModel):
    SERVICE_CHOICES = (
        ("paypal", "PayPal"),
        ("stripe", "Stripe"),
        ("github", "GitHub"),
        ("twitter", "Twitter"),
        ("transferwise", "TransferWise"),
        ("privacy", "Privacy"),
        ("braintree", "Braintree"),
        ("meetup", "Meetup"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="connected_accounts",
    )
    service = models.CharField(max_length=20, choices=SERVICE_CHOICES)
    username = models.CharField(max_length=255, null=True, blank=True)
    client_id = models.CharField(max_length=255, null=True, blank=True)
    token = models.CharField(max_length=1024, null=True, blank=True)
    settings = models.JSONField(default=dict, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("collective", "service")),
        ]


class PaypalProductORM(TimeStampedModel):
    # PayPal catalog product id
    id = models.CharField(primary_key=True, max_length=255)
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="paypal_products",
    )
    tier = models.ForeignKey(
        TierORM,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="paypal_products",
    )
    deleted_at = models.DateTimeField(null=True, blank=True)


class MemberORM(TimeStampedModel):
    ROLE_CHOICES = (
        ("BACKER", "Backer"),
        ("ADMIN", "Admin"),
        ("MEMBER", "Member"),
        ("HOST", "Host"),
        ("FOLLOWER", "Follower"),
        ("ATTENDEE", "Attendee"),
    )

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    member_collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        related_name="members",
    )
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    tier = models.ForeignKey(
        TierORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )
    created_by_user = models.ForeignKey(
        UserORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        indexes = [
            models.Index(fields=("collective", "role")),
        ]


class NotificationORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    channel = models.CharField(max_length=20, default="email")
    type = models.CharField(max_length=100)
    active = models.BooleanField(default=True)
    user = models.ForeignKey(
        UserORM,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    collective = models.ForeignKey(
        CollectiveORM,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )

    class Meta:
        unique_together = [("channel", "type", "user", "collective")]


class IdempotencyKey(TimeStampedModel):
    key = models.CharField(max_length=255)
    operation = models.CharField(max_length=30, choices=OPERATION_TYPE)
    request_hash = models.CharField(max_length=255)
    response_payload = models.JSONField()

    class Meta:
        unique_together = [("key", "operation")]
        indexes = [
            models.Index(fields=("request_hash",)),
        ]
