"""
Tests for the SMTP email dispatcher.
"""
import email
import smtplib
from unittest.mock import MagicMock, patch

from audit_auth.mailer import EmailDispatcher


def _decoded_bodies(raw_message: str) -> str:
    message = email.message_from_string(raw_message)
    return "\n".join(
        part.get_payload(decode=True).decode("utf-8")
        for part in message.walk()
        if not part.is_multipart()
    )


def _configured() -> EmailDispatcher:
    return EmailDispatcher(
        smtp_host="smtp.auditoria.com",
        smtp_port=587,
        smtp_user="noreply@auditoria.com",
        smtp_password="secret",
    )


async def test_unconfigured_dispatcher_only_logs():
    """Test development mode reports success without touching SMTP."""
    dispatcher = EmailDispatcher()

    with patch("audit_auth.mailer.smtplib.SMTP") as smtp:
        sent = await dispatcher.send_two_factor_code("juan@auditoria.com", "Juan", "123456", 10)

    assert not dispatcher.is_configured
    assert sent is True
    smtp.assert_not_called()


async def test_reset_email_sent_over_starttls():
    """Test the reset link is delivered through STARTTLS with login."""
    dispatcher = _configured()
    server = MagicMock()

    with patch("audit_auth.mailer.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value = server
        sent = await dispatcher.send_reset_password_email(
            "juan@auditoria.com", "Juan", "http://frontend/reset-password?token=abc", 30
        )

    assert sent is True
    smtp.assert_called_once_with("smtp.auditoria.com", 587, timeout=30)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("noreply@auditoria.com", "secret")
    from_addr, to_addr, message = server.sendmail.call_args.args
    assert from_addr == "noreply@auditoria.com"
    assert to_addr == "juan@auditoria.com"
    assert "token=abc" in _decoded_bodies(message)
    assert "30 minutos" in _decoded_bodies(message)


async def test_two_factor_code_over_ssl():
    dispatcher = EmailDispatcher(
        smtp_host="smtp.auditoria.com",
        smtp_port=465,
        smtp_use_tls=False,
        from_email="noreply@auditoria.com",
    )
    server = MagicMock()

    with patch("audit_auth.mailer.smtplib.SMTP_SSL") as smtp_ssl:
        smtp_ssl.return_value.__enter__.return_value = server
        sent = await dispatcher.send_two_factor_code("juan@auditoria.com", "Juan", "654321", 10)

    assert sent is True
    server.login.assert_not_called()
    assert "654321" in _decoded_bodies(server.sendmail.call_args.args[2])


async def test_delivery_failure_returns_false():
    """Test SMTP errors are reported as a failed delivery."""
    dispatcher = _configured()

    with patch("audit_auth.mailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, b"busy")):
        sent = await dispatcher.send_two_factor_code("juan@auditoria.com", "Juan", "123456", 10)

    assert sent is False


async def test_authentication_failure_returns_false():
    dispatcher = _configured()
    server = MagicMock()
    server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    with patch("audit_auth.mailer.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value = server
        sent = await dispatcher.send_two_factor_code("juan@auditoria.com", "Juan", "123456", 10)

    assert sent is False
    server.sendmail.assert_not_called()
