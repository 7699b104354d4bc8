import pytest

from app.core.config import settings
from app.services import email_service


@pytest.fixture
def sent(monkeypatch):
    messages = []

    def fake_send_email(to_email, subject, body, html=None):
        messages.append({"to": to_email, "subject": subject, "body": body, "html": html})
        return True

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return messages


def test_password_reset_email_links_to_frontend(sent, monkeypatch):
    monkeypatch.setattr(settings, "FRONTEND_URL", "https://courier.example.com/")
    email_service.send_password_reset_email("a@example.com", "Ada", "tok123")

    assert sent[0]["to"] == "a@example.com"
    assert "https://courier.example.com/reset-password?token=tok123" in sent[0]["body"]


def test_otp_email_contains_code(sent):
    email_service.send_otp_email("a@example.com", "Ada", "123456", "email_verify")
    assert "123456" in sent[0]["body"]
    assert "email verify" in sent[0]["body"]


def test_console_backend_does_not_need_smtp():
    assert settings.EMAIL_BACKEND == "console"
    assert email_service.send_email("a@example.com", "hi", "body") is True


def test_smtp_backend_requires_credentials(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_BACKEND", "smtp")
    monkeypatch.setattr(settings, "SMTP_USER", None)
    with pytest.raises(RuntimeError):
        email_service.send_email("a@example.com", "hi", "body")
