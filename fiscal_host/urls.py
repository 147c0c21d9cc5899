"""
URL configuration for fiscal_host project.
"""
from django.contrib import admin
from django.urls import path

from funding.api.views import paypal_webhook_view, stripe_webhook_view, unsubscribe_view

urlpatterns = [
    path('admin/', admin.site.urls),
    path('webhooks/stripe', stripe_webhook_view, name='stripe-webhook'),
    path('webhooks/paypal/<uuid:host_id>', paypal_webhook_view, name='paypal-webhook'),
    path(
        'services/email/unsubscribe/<str:email>/<str:slug>/<str:type>/<str:token>',
        unsubscribe_view,
        name='email-unsubscribe',
    ),
]
