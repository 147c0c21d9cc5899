from django import template

from funding.services.notifications import format_currency

register = template.Library()


@register.filter
def currency(amount, currency_code):
    """{{ order.totalAmount|currency:order.currency }}"""
    if amount in (None, ""):
        return ""
    return format_currency(int(amount), currency_code or "USD")
