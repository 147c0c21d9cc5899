"""
Masking of personal data before it reaches the logs.
"""
import re

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)

# Keys whose values are always masked, whatever they look like
PII_KEYS = {"email", "recipient", "to", "bcc", "name", "token", "customer_id", "user_id"}


def mask_email(email: str) -> str:
    """j*****@example.com"""
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if len(local) <= 2:
        return f"**@{domain}"
    return f"{local[:2]}{'*' * (len(local) - 2)}@{domain}"


def mask_uuid(uuid_str: str) -> str:
    """Keep the first 8 characters only."""
    if len(uuid_str) < 8:
        return "*" * len(uuid_str)
    return uuid_str[:8] + "-****-****-****-************"


def mask_secret(value: str) -> str:
    if len(value) <= 4:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 4)


def mask_value(key: str, value):
    if not isinstance(value, str):
        return value
    if "@" in value:
        return ", ".join(mask_email(part.strip()) for part in value.split(","))
    if UUID_PATTERN.match(value):
        return mask_uuid(value)
    if key.lower() in PII_KEYS:
        return mask_secret(value)
    return value


def mask_pii_in_dict(data: dict) -> dict:
    """Mask PII in a dictionary, recursively."""
    masked = {}
    for key, value in data.items():
        if isinstance(value, dict):
            masked[key] = mask_pii_in_dict(value)
        elif isinstance(value, list):
            masked[key] = [mask_pii_in_dict(item) if isinstance(item, dict) else mask_value(key, item) for item in value]
        elif key.lower() in PII_KEYS or "id" in key.lower() or (isinstance(value, str) and "@" in value):
            masked[key] = mask_value(key, value)
        else:
            masked[key] = value
    return masked
