from django.contrib import admin

from funding.infra.activities import ActivityORM
from funding.infra.models import (
    CollectiveORM,
    ConnectedAccountORM,
    ExpenseORM,
    IdempotencyKey,
    OrderORM,
    PaymentMethodORM,
    TransactionORM,
    TransactionSettlementORM,
)


@admin.register(CollectiveORM)
class CollectiveAdmin(admin.ModelAdmin):
    list_display = ("id", "slug", "type", "is_host_account", "is_active", "created_at")
    list_filter = ("type", "is_host_account", "is_active")
    search_fields = ("slug", "name")


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "collective", "from_collective", "status", "total_amount", "currency", "created_at")
    list_filter = ("status", "created_at")
    search_fields = ("id", "collective__slug")


@admin.register(PaymentMethodORM)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ("id", "collective", "service", "type", "saved", "created_at")
    list_filter = ("service", "type")


@admin.register(TransactionORM)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "type", "kind", "collective", "amount", "currency", "is_refund", "created_at")
    list_filter = ("type", "kind", "created_at")
    search_fields = ("id", "transaction_group")
    readonly_fields = ("transaction_group", "amount", "net_amount_in_collective_currency", "refund_transaction")


@admin.register(TransactionSettlementORM)
class TransactionSettlementAdmin(admin.ModelAdmin):
    list_display = ("transaction_group", "kind", "status", "expense", "created_at")
    list_filter = ("status", "kind")


@admin.register(ExpenseORM)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ("id", "collective", "type", "status", "amount", "currency", "created_at")
    list_filter = ("type", "status")


@admin.register(ConnectedAccountORM)
class ConnectedAccountAdmin(admin.ModelAdmin):
    list_display = ("id", "collective", "service", "username", "created_at")
    list_filter = ("service",)
    exclude = ("token",)


@admin.register(IdempotencyKey)
class IdempotencyAdmin(admin.ModelAdmin):
    list_display = ("key", "operation", "created_at")
    list_filter = ("operation", "created_at")
    search_fields = ("key",)


@admin.register(ActivityORM)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ("id", "type", "collective", "processed", "retry_count", "created_at")
    list_filter = ("processed", "type", "created_at")
    readonly_fields = ("id", "type", "collective", "user", "data", "processed", "processed_at", "retry_count")
