"""
Transactional email: template selection, unsubscribe links and delivery
through Django's mail framework.

Templates live in ``funding/templates/emails/<name>.html``. Their first lines
are ``Key: value`` attributes (at least ``Subject``), the rest is the body.
"""
from __future__ import annotations

import hashlib
import logging
import re
from urllib.parse import quote

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import get_template

from funding.infra.models import CollectiveORM, NotificationORM, UserORM
from funding.infra.pii_masker import mask_email

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r".+@.+\..+")
ATTRIBUTE_PATTERN = re.compile(r"^([a-z]+):(.+)", re.I)
LINE_BREAK_PATTERN = re.compile(r"<br( /)?>")

NOTIFICATION_TYPE_LABELS = {
    "email.approve": "notifications of new emails pending approval",
    "collective.order.created": "notifications of new donations for this collective",
    "collective.comment.created": "notifications of new comments submitted to this collective",
    "collective.expense.created": "notifications of new expenses submitted to this collective",
    "collective.expense.approved.for.host": "notifications of new expenses approved under this host",
    "collective.expense.paid.for.host": "notifications of new expenses paid under this host",
    "collective.monthlyreport": "monthly reports for collectives",
    "collective.member.created": "notifications of new members",
    "collective.update.published": "notifications of new updates from this collective",
    "host.monthlyreport": "monthly reports for host",
    "host.yearlyreport": "yearly reports for host",
    "collective.transaction.created": "notifications of new transactions for this collective",
    "onboarding": "onboarding emails",
    "user.monthlyreport": "monthly reports for backers",
    "user.yearlyreport": "yearly reports",
    "thankyou": "thank you for your donation",
}

THANKYOU_HOST_VARIANTS = ("foundation", "opensource")
THANKYOU_COLLECTIVE_VARIANTS = ("chsf", "kendraio", "brusselstogether", "sustainoss", "ispcwa")
FRENCH_COLLECTIVES = ("laprimaire", "lesbarbares", "nuitdebout", "enmarchebe", "monnaie-libre")
FRENCH_INTERVALS = {"month": "mois", "year": "an"}


class EmailError(Exception):
    pass


class UnsubscribeError(Exception):
    def __init__(self, message: str, code: str):
        self.message = message
        self.code = code
        super().__init__(self.message)


def generate_unsubscribe_token(email: str, collective_slug: str | None, type: str, hashing=hashlib.sha512) -> str:
    uid = f"{email}.{collective_slug or 'any'}.{type}.{settings.EMAIL_UNSUBSCRIBE_SECRET}"
    return hashing(uid.encode("utf-8")).hexdigest()


def is_valid_unsubscribe_token(token: str, email: str, collective_slug: str | None, type: str) -> bool:
    if generate_unsubscribe_token(email, collective_slug, type) == token:
        return True
    # Links sent before the switch to sha512
    return generate_unsubscribe_token(email, collective_slug, type, hashing=hashlib.md5) == token


def get_unsubscribe_url(email: str, collective_slug: str, type: str) -> str:
    token = generate_unsubscribe_token(email, collective_slug, type)
    return f"{settings.WEBSITE_URL}/email/unsubscribe/{quote(email, safe='')}/{collective_slug}/{type}/{token}"


def get_template_attributes(text: str) -> dict:
    """
    Split a rendered template into its leading attributes and its body.

    >>> get_template_attributes("Subject: Hello<br>World\\n\\nBody")["subject"]
    'Hello\\nWorld'
    """
    lines = text.split("\n")
    attributes = {}
    index = 0
    while index < len(lines):
        tokens = ATTRIBUTE_PATTERN.match(lines[index])
        if not tokens:
            break
        attributes[tokens.group(1).lower()] = LINE_BREAK_PATTERN.sub("\n", tokens.group(2)).strip()
        index += 1

    # The line that ended the attributes is not part of the body
    attributes["body"] = "\n".join(lines[index + 1:]).strip()
    return attributes


def is_email_internal(email: str) -> bool:
    domain = email.strip().rsplit("@", 1)[-1].lower()
    return domain in settings.EMAIL_INTERNAL_DOMAINS


def filter_bcc_for_test_env(emails):
    if not emails:
        return emails
    if isinstance(emails, str):
        return ",".join(e for e in emails.split(",") if is_email_internal(e))
    return [e for e in emails if is_email_internal(e)]


def get_notification_label(template: str, recipients) -> str | None:
    """Label following "To unsubscribe from" in the email footer."""
    if not isinstance(recipients, (list, tuple)):
        recipients = [recipients]
    template = template.replace(".text", "")
    if template == "email.message":
        return f"the {recipients[0].split('@')[0]} mailing list"
    return NOTIFICATION_TYPE_LABELS.get(template)


def resolve_template_name(template: str, data: dict, slug: str) -> str:
    """
    Host and collective specific variant of ``template``.

    French thank you emails also get their interval translated in ``data``.
    """
    host_slug = (data.get("host") or {}).get("slug")
    event_slug = (data.get("event") or {}).get("slug")

    if template == "ticket.confirmed":
        if slug == "fearlesscitiesbrussels":
            template += ".fearlesscitiesbrussels"
        if event_slug == "open-2020-networked-commons-initiatives-9b91f4ca":
            template += ".open-2020"

    if template == "collective.approved" and host_slug == "the-social-change-nest":
        template += ".the-social-change-nest"

    if template == "collective.created":
        if host_slug == "opensource":
            template += ".opensource"
        if host_slug == "the-social-change-nest":
            template += ".the-social-change-nest"

    if re.match(r"^host\.(monthly|yearly)report$", template):
        template = "host.report"

    if template == "thankyou":
        if "wwcode" in slug:
            template = "thankyou.wwcode"
        elif host_slug in THANKYOU_HOST_VARIANTS:
            template = f"thankyou.{host_slug}"
        elif slug in THANKYOU_COLLECTIVE_VARIANTS:
            template = f"thankyou.{slug}"
        elif slug in FRENCH_COLLECTIVES:
            template = "thankyou.laprimaire" if slug == "laprimaire" else "thankyou.fr"
            data["interval"] = FRENCH_INTERVALS.get(data.get("interval"), data.get("interval"))

    return template


def generate_email_from_template(template: str, recipient, data: dict, options: dict | None = None) -> dict:
    """Render ``template`` for ``recipient``. Returns ``{"html", "text", "template"}``."""
    options = options or {}
    slug = (options.get("collective") or {}).get("slug") or (data.get("collective") or {}).get("slug") or "undefined"
    notification_type = options.get("type") or template

    # Emails sent to several recipients at once cannot be unsubscribed from
    if not isinstance(recipient, (list, tuple)):
        address = recipient or options.get("bcc")
        data["notificationTypeLabel"] = get_notification_label(notification_type, address)
        data["unsubscribeUrl"] = get_unsubscribe_url(address, slug, notification_type)

    template = resolve_template_name(template, data, slug)
    data["config"] = {"host": {"website": settings.WEBSITE_URL, "api": settings.API_URL}}
    data["utm"] = f"utm_source=opencollective&utm_campaign={template}&utm_medium=email"

    try:
        html_template = get_template(f"emails/{template}.html")
    except TemplateDoesNotExist as e:
        raise EmailError(f"Invalid email template: {template}") from e

    try:
        text = get_template(f"emails/{template}.txt").render(data)
    except TemplateDoesNotExist:
        text = None

    return {"html": html_template.render(data), "text": text, "template": template}


def send_message(recipients, subject: str, html: str, options: dict | None = None) -> int:
    """
    Send an email. Outside production, mail goes to the BCC mailbox instead of
    the recipients unless ``sendEvenIfNotProduction`` is set.

    Returns the number of messages handed to the mail backend.
    """
    options = dict(options or {})
    bcc = options.get("bcc") or settings.EMAIL_BCC

    if not isinstance(recipients, (list, tuple)):
        recipients = [recipients]
    valid_recipients = []
    for recipient in recipients:
        if recipient and EMAIL_PATTERN.match(recipient):
            valid_recipients.append(recipient)
        else:
            logger.debug("invalid_recipient_skipped", extra={"recipient": mask_email(recipient or "")})

    if settings.APP_ENV == "staging":
        subject = f"[STAGING] {subject}"
    elif settings.APP_ENV != "production" and settings.WEBSITE_URL != "https://opencollective.com":
        subject = f"[TESTING] {subject}"

    to = ", ".join(valid_recipients) if valid_recipients else None

    if settings.EMAIL_ONLY_RECIPIENT:
        to = settings.EMAIL_ONLY_RECIPIENT
    elif settings.APP_ENV != "production":
        if not to:
            logger.info("email_not_sent", extra={"error": "No recipient defined"})
            return 0

        bcc = filter_bcc_for_test_env(bcc)
        send_to_bcc = not (options.get("sendEvenIfNotProduction") is True and settings.APP_ENV not in ("ci", "test"))
        if send_to_bcc:
            to = "emailbcc+{}@opencollective.com".format(to.replace("@", "-at-"))

    tag = options.get("tag") if settings.APP_ENV == "production" else "internal"
    headers = {"X-Mailgun-Tag": tag, "X-Mailgun-Dkim": "yes"}
    if options.get("replyTo"):
        headers["Reply-To"] = options["replyTo"]

    message = EmailMultiAlternatives(
        subject=subject,
        body=options.get("text") or html,
        from_email=options.get("from") or settings.DEFAULT_FROM_EMAIL,
        to=[to] if to else [],
        cc=_as_list(options.get("cc")),
        bcc=_as_list(bcc),
        headers=headers,
    )
    if options.get("text"):
        message.attach_alternative(html, "text/html")
    else:
        message.content_subtype = "html"
    for attachment in options.get("attachments") or []:
        message.attach(attachment["filename"], attachment["content"], attachment.get("mimetype"))

    logger.info("email_sending", extra={"recipient": mask_email(to or ""), "template": options.get("tag")})
    return message.send()


def _as_list(emails) -> list[str]:
    if not emails:
        return []
    if isinstance(emails, str):
        return [e.strip() for e in emails.split(",") if e.strip()]
    return list(emails)


def is_notification_active(type: str, user_id, collective_id=None) -> bool:
    """A user receives a notification unless they turned it off."""
    notifications = NotificationORM.objects.filter(channel="email", type=type, user_id=user_id)
    if collective_id:
        notifications = notifications.filter(collective_id=collective_id)
    notification = notifications.first()
    return notification is None or notification.active


def send(template: str, recipient, data: dict, options: dict | None = None) -> int | None:
    """
    Render and send ``template``. Missing recipients and disabled notifications
    are skipped; delivery errors are logged, not raised.
    """
    options = dict(options or {})
    if not recipient:
        logger.info("email_not_sent", extra={"template": template, "error": "No recipient"})
        return None

    user_id = (data.get("user") or {}).get("id")
    if user_id and not is_notification_active(template, user_id, (data.get("collective") or {}).get("id")):
        logger.info("email_not_sent", extra={"template": template, "error": "Notification is not active"})
        return None

    try:
        rendered = generate_email_from_template(template, recipient, data, options)
        attributes = get_template_attributes(rendered["html"])
        options["text"] = rendered["text"]
        options["tag"] = template
        return send_message(recipient, attributes.get("subject", ""), attributes["body"], options)
    except Exception as e:
        logger.error("email_failed", extra={"template": template, "error": str(e)}, exc_info=True)
        return None


def unsubscribe(email: str, collective_slug: str, type: str, token: str) -> None:
    """Turn off the ``type`` notification of a user after checking the link token."""
    if not is_valid_unsubscribe_token(token, email, collective_slug, type):
        raise UnsubscribeError("Invalid token", "VALIDATION_ERROR")

    user = UserORM.objects.filter(email=email).first()
    if user is None:
        raise UnsubscribeError(f'Cannot find a user with email "{email}"', "NOT_FOUND")

    collective = CollectiveORM.objects.filter(slug=collective_slug).first()
    updated = NotificationORM.objects.filter(
        channel="email",
        type=type,
        user=user,
        collective=collective,
    ).update(active=False)
    if not updated:
        NotificationORM.objects.create(channel="email", type=type, user=user, collective=collective, active=False)

    logger.info("email_unsubscribed", extra={"recipient": mask_email(email), "template": type})
