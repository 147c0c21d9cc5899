from enum import Enum


class Service(str, Enum):
    """Third party services an account can connect."""
    PAYPAL = "paypal"
    STRIPE = "stripe"
    GITHUB = "github"
    TWITTER = "twitter"
    TRANSFERWISE = "transferwise"
    PRIVACY = "privacy"
    BRAINTREE = "braintree"
    MEETUP = "meetup"  # deprecated


SUPPORTED_SERVICES = tuple(service.value for service in Service)
