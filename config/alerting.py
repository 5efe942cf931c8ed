"""
Operator alerting for failed pipeline invocations.

Routes alerts through logging + optional Slack webhook + optional email
(critical only). Delivery problems are logged and never mask the error that
triggered the alert.
"""
import logging
import os

import requests

logger = logging.getLogger("alerting")

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


def _setting(name: str) -> str:
    from django.conf import settings
    value = getattr(settings, name, "") if settings.configured else ""
    return value or os.environ.get(name, "")


def send_alert(severity: str, title: str, detail: str = "") -> None:
    """
    Send alert through configured channels.

    Args:
        severity: "critical", "warning", or "info"
        title: Short alert title
        detail: Additional context
    """
    log_fn = {
        SEVERITY_CRITICAL: logger.critical,
        SEVERITY_WARNING: logger.warning,
    }.get(severity, logger.info)
    log_fn("ALERT [%s]: %s -- %s", severity.upper(), title, detail)

    webhook = _setting("SLACK_WEBHOOK_URL")
    if webhook:
        emoji = {
            SEVERITY_CRITICAL: ":red_circle:",
            SEVERITY_WARNING: ":warning:",
        }.get(severity, ":information_source:")
        try:
            requests.post(
                webhook,
                json={"text": f"{emoji} *{title}*\n{detail}"},
                timeout=5,
            )
        except requests.RequestException:
            logger.exception("Failed to send Slack alert")

    alert_email = _setting("ALERT_EMAIL")
    if alert_email and severity == SEVERITY_CRITICAL:
        from django.core.mail import send_mail
        send_mail(
            subject=f"[Enrichment Agents CRITICAL] {title}",
            message=detail or title,
            from_email=None,
            recipient_list=[alert_email],
            fail_silently=True,
        )


def severity_for_status(http_status: int) -> str:
    """Map the HTTP status an error will surface as to an alert severity.

    Client errors (400/404) are not operator problems and return "".
    """
    if http_status >= 500:
        return SEVERITY_CRITICAL
    if http_status in (402, 429):
        return SEVERITY_WARNING
    return ""
