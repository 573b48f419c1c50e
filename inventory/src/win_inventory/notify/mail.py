from __future__ import annotations

import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, Optional, Sequence, Tuple

from ..core.model import RiskAssessment, Tier
from ..logging import get_logger

LOG = get_logger(__name__)

PASSWORD_ENV = "WIN_INV_SMTP_PASSWORD"
ALERT_NEVER = "never"
ALERT_CHOICES = ("Yellow", "Red", ALERT_NEVER)

TIER_RANK: Dict[str, int] = {
    Tier.GREEN.value: 0,
    Tier.YELLOW.value: 1,
    Tier.RED.value: 2,
}


@dataclass(frozen=True)
class MailSettings:
    smtp_host: str
    mail_from: str
    mail_to: Tuple[str, ...]
    smtp_port: int = 25
    starttls: bool = False
    smtp_user: Optional[str] = None
    timeout: float = 30.0


def should_alert(tier: Tier, alert_on: str) -> bool:
    """True when tier is at or above the configured alert level."""
    if alert_on == ALERT_NEVER:
        return False
    if alert_on not in TIER_RANK:
        raise ValueError(f"alert_on must be one of {', '.join(ALERT_CHOICES)}; got {alert_on!r}")
    return TIER_RANK[tier.value] >= TIER_RANK[alert_on]


def build_alert_message(
    settings: MailSettings,
    assessment: RiskAssessment,
    *,
    servers: Sequence[str],
    failures: int,
    outdir: str,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"DHCP inventory risk {assessment.tier.value} ({assessment.total} points)"
    msg["From"] = settings.mail_from
    msg["To"] = ", ".join(settings.mail_to)

    lines = [
        f"Risk tier: {assessment.tier.value}",
        f"Risk points: {assessment.total}",
        f"Scopes evaluated: {assessment.scopes_evaluated}",
        f"Servers: {', '.join(servers) or '(none)'}",
        f"Collection failures: {failures}",
        f"Output: {outdir}",
        "",
        "Triggered findings:",
    ]
    triggered = assessment.triggered
    for f in triggered[:50]:
        lines.append(f"  {f.server} {f.scope_id or '(server)'}: {f.rule} (+{f.weight})")
    if len(triggered) > 50:
        lines.append(f"  ... {len(triggered) - 50} more")
    if not triggered:
        lines.append("  none")
    msg.set_content("\n".join(lines) + "\n")
    return msg


def send_alert(settings: MailSettings, message: EmailMessage) -> None:
    """
    Deliver message over SMTP. The login password is read from
    WIN_INV_SMTP_PASSWORD and never from config files.
    """
    password = os.getenv(PASSWORD_ENV)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.timeout) as smtp:
        if settings.starttls:
            smtp.starttls()
        if settings.smtp_user:
            if not password:
                raise ValueError(f"smtp_user is set but {PASSWORD_ENV} is empty")
            smtp.login(settings.smtp_user, password)
        smtp.send_message(message)
    LOG.info(
        "Alert sent",
        extra={"step": "alert", "phase": "sent", "recipients": len(settings.mail_to)},
    )


def maybe_alert(
    settings: Optional[MailSettings],
    assessment: RiskAssessment,
    alert_on: str,
    *,
    servers: Sequence[str],
    failures: int,
    outdir: str,
) -> str:
    """
    Send an alert when the tier warrants one. Returns the alert status for
    the run summary: skipped, not-configured, sent or failed.
    Delivery problems are logged and never raised.
    """
    if not should_alert(assessment.tier, alert_on):
        return "skipped"
    if settings is None:
        LOG.warning(
            "Alert threshold reached but mail is not configured",
            extra={"step": "alert", "phase": "skip", "tier": assessment.tier.value},
        )
        return "not-configured"
    message = build_alert_message(settings, assessment, servers=servers, failures=failures, outdir=outdir)
    try:
        send_alert(settings, message)
    except (smtplib.SMTPException, OSError, ValueError) as exc:
        LOG.warning(
            "Alert delivery failed",
            extra={"step": "alert", "phase": "error", "error": str(exc)},
        )
        return "failed"
    return "sent"
