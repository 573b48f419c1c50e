from __future__ import annotations

import smtplib
from typing import Any, List

import pytest

from win_inventory.core.model import HealthFinding, RiskAssessment, Tier
from win_inventory.notify import mail as mail_mod
from win_inventory.notify.mail import (
    MailSettings,
    build_alert_message,
    maybe_alert,
    send_alert,
    should_alert,
)


def _assessment(tier: Tier = Tier.RED, total: int = 9) -> RiskAssessment:
    return RiskAssessment(
        total=total,
        tier=tier,
        findings=(
            HealthFinding("dhcp-a", "10.0.0.0", "high-utilization", 3, True),
            HealthFinding("dhcp-a", "10.0.0.0", "inactive-scope", 3, False),
            HealthFinding("dhcp-b", "192.168.1.0", "inactive-scope", 3, True),
        ),
        scopes_evaluated=2,
    )


SETTINGS = MailSettings(
    smtp_host="smtp.corp.example",
    mail_from="inventory@corp.example",
    mail_to=("netops@corp.example", "oncall@corp.example"),
)


class FakeSMTP:
    instances: List["FakeSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float = 0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in: Any = None
        self.sent: List[Any] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def starttls(self) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logged_in = (user, password)

    def send_message(self, message: Any) -> None:
        self.sent.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mail_mod.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.mark.parametrize(
    "tier, alert_on, expected",
    [
        (Tier.RED, "Red", True),
        (Tier.YELLOW, "Red", False),
        (Tier.YELLOW, "Yellow", True),
        (Tier.RED, "Yellow", True),
        (Tier.GREEN, "Yellow", False),
        (Tier.RED, "never", False),
    ],
)
def test_should_alert(tier: Tier, alert_on: str, expected: bool) -> None:
    assert should_alert(tier, alert_on) is expected


def test_should_alert_rejects_unknown_level() -> None:
    with pytest.raises(ValueError):
        should_alert(Tier.RED, "Orange")


def test_build_alert_message_lists_triggered_findings() -> None:
    msg = build_alert_message(SETTINGS, _assessment(), servers=["dhcp-a", "dhcp-b"], failures=1, outdir="out/x")
    assert msg["Subject"] == "DHCP inventory risk Red (9 points)"
    assert msg["To"] == "netops@corp.example, oncall@corp.example"
    body = msg.get_content()
    assert "dhcp-a 10.0.0.0: high-utilization (+3)" in body
    assert "dhcp-b 192.168.1.0: inactive-scope (+3)" in body
    assert "dhcp-a 10.0.0.0: inactive-scope" not in body
    assert "Collection failures: 1" in body


def test_send_alert_with_starttls_and_login(monkeypatch, fake_smtp) -> None:
    monkeypatch.setenv("WIN_INV_SMTP_PASSWORD", "s3cret")
    settings = MailSettings(
        smtp_host="smtp.corp.example",
        mail_from="inventory@corp.example",
        mail_to=("netops@corp.example",),
        smtp_port=587,
        starttls=True,
        smtp_user="svc-inventory",
    )
    msg = build_alert_message(settings, _assessment(), servers=[], failures=0, outdir="out")
    send_alert(settings, msg)

    [smtp] = fake_smtp.instances
    assert (smtp.host, smtp.port) == ("smtp.corp.example", 587)
    assert smtp.started_tls
    assert smtp.logged_in == ("svc-inventory", "s3cret")
    assert smtp.sent == [msg]


def test_send_alert_requires_password_for_login(monkeypatch, fake_smtp) -> None:
    monkeypatch.delenv("WIN_INV_SMTP_PASSWORD", raising=False)
    settings = MailSettings("smtp", "a@x", ("b@x",), smtp_user="svc")
    with pytest.raises(ValueError):
        send_alert(settings, build_alert_message(settings, _assessment(), servers=[], failures=0, outdir="out"))


def test_maybe_alert_statuses(monkeypatch, fake_smtp) -> None:
    kwargs = {"servers": ["dhcp-a"], "failures": 0, "outdir": "out"}
    assert maybe_alert(SETTINGS, _assessment(Tier.GREEN, 1), "Red", **kwargs) == "skipped"
    assert maybe_alert(None, _assessment(), "Red", **kwargs) == "not-configured"
    assert maybe_alert(SETTINGS, _assessment(), "Red", **kwargs) == "sent"
    assert len(fake_smtp.instances) == 1


def test_maybe_alert_reports_delivery_failure(monkeypatch) -> None:
    def _refuse(*args: Any, **kwargs: Any) -> Any:
        raise smtplib.SMTPConnectError(421, "try later")

    monkeypatch.setattr(mail_mod.smtplib, "SMTP", _refuse)
    status = maybe_alert(SETTINGS, _assessment(), "Yellow", servers=[], failures=0, outdir="out")
    assert status == "failed"
