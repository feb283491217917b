"""
Mail outbox tests.

Verifies:
- Disabled mail is recorded, never sent
- Synchronous delivery retries up to MAIL_MAX_ATTEMPTS and never raises
- Messages carry text and escaped HTML bodies
"""

import smtplib

import pytest
from flask import Flask

from gasbook.services import mail_service
from gasbook.services.mail_service import MailMessage, MailOutbox, SmtpMailer


def _outbox(**config):
    app = Flask(__name__)
    app.config.update(APP_BASE_URL="https://gas.example.com/", **config)
    outbox = MailOutbox()
    outbox.init_app(app)
    return outbox


class FakeSMTP:
    instances = []
    fail_times = 0

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.logged_in = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, username, password):
        self.logged_in = username

    def send_message(self, message):
        if FakeSMTP.fail_times > 0:
            FakeSMTP.fail_times -= 1
            raise smtplib.SMTPServerDisconnected("connection dropped")
        self.sent.append(message)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_times = 0
    monkeypatch.setattr(mail_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


MESSAGE = MailMessage(to="asha@example.com", subject="Hello", text="Plain body", html="<p>Body</p>")


def test_disabled_mail_is_recorded():
    outbox = _outbox(MAIL_ENABLED=False)
    assert outbox.enqueue(MESSAGE) is True
    assert outbox.sent == [MESSAGE]


def test_none_or_missing_recipient_is_dropped():
    outbox = _outbox(MAIL_ENABLED=False)
    assert outbox.enqueue(None) is False
    assert outbox.enqueue(MailMessage(to="", subject="x", text="y")) is False
    assert outbox.sent == []


def test_base_url_strips_trailing_slash():
    assert _outbox().base_url == "https://gas.example.com"


def test_sync_delivery(fake_smtp):
    outbox = _outbox(MAIL_ENABLED=True, MAIL_SYNC=True, SMTP_HOST="smtp.test", SMTP_PORT=2525,
                     SMTP_USERNAME="mailer", MAIL_FROM="agency@example.com")
    assert outbox.enqueue(MESSAGE) is True

    smtp = fake_smtp.instances[-1]
    assert (smtp.host, smtp.port) == ("smtp.test", 2525)
    assert smtp.logged_in == "mailer"
    sent = smtp.sent[0]
    assert sent["From"] == "agency@example.com"
    assert sent["To"] == "asha@example.com"
    assert outbox.sent == [MESSAGE]


def test_retries_then_succeeds(fake_smtp):
    fake_smtp.fail_times = 1
    outbox = _outbox(MAIL_ENABLED=True, MAIL_SYNC=True, MAIL_MAX_ATTEMPTS=3)
    assert outbox.enqueue(MESSAGE) is True
    assert len(fake_smtp.instances) == 2


def test_gives_up_without_raising(fake_smtp):
    fake_smtp.fail_times = 5
    outbox = _outbox(MAIL_ENABLED=True, MAIL_SYNC=True, MAIL_MAX_ATTEMPTS=2)
    assert outbox.enqueue(MESSAGE) is False
    assert outbox.failed == [MESSAGE]
    assert outbox.sent == []


def test_background_worker_delivers(fake_smtp):
    outbox = _outbox(MAIL_ENABLED=True)
    assert outbox.enqueue(MESSAGE) is True
    outbox.join()
    assert outbox.sent == [MESSAGE]


def test_build_has_text_and_html():
    email = SmtpMailer({"MAIL_FROM": "agency@example.com"}).build(MESSAGE)
    assert email.get_body(preferencelist=("plain",)).get_content().strip() == "Plain body"
    assert "<p>Body</p>" in email.get_body(preferencelist=("html",)).get_content()


def test_builders_escape_html():
    message = mail_service.verification_email("a@example.com", "<Asha>", "https://x/verify?token=abc")
    assert "&lt;Asha&gt;" in message.html
    assert "Hello <Asha>," in message.text
    assert message.tags == ["verify-email"]
    assert mail_service.verification_email(None, "Asha", "link") is None
