"""
Transactional email for password reset links and two-factor codes.

Messages go out over SMTP when SMTP_HOST is configured. Without it the
dispatcher runs in development mode and only logs that a message would have
been sent.
"""
import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from audit_auth.config import settings

logger = logging.getLogger(__name__)


def _redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailDispatcher:
    """SMTP email sender with a log-only fallback."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Audit Platform",
        timeout: int = 30,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "EmailDispatcher":
        """Dispatcher configured through the SMTP_* and EMAIL_* settings."""
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            smtp_use_tls=settings.SMTP_USE_TLS,
            from_email=settings.EMAIL_FROM,
            from_name=settings.EMAIL_FROM_NAME,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """
        Send an email via SMTP.

        Returns:
            True if the message was handed to the server (or logged in
            development mode), False if delivery failed.
        """
        if not self.is_configured:
            logger.info(f"Email not sent (SMTP not configured): to={_redact_email(to_email)} subject={subject}")
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.smtp_user} on {self.smtp_host}: {str(e)}")
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(f"Failed to send email to {_redact_email(to_email)}: {type(e).__name__}: {str(e)}")
            return False

        logger.info(f"Email sent to {_redact_email(to_email)}: {subject}")
        return True

    # PUBLIC_INTERFACE
    async def send_reset_password_email(
        self, to: str, user_name: str, reset_link: str, expires_in_minutes: int
    ) -> bool:
        """
        Send the password reset link.

        Args:
            to: Recipient address.
            user_name: Name used in the greeting.
            reset_link: Link embedding the reset token.
            expires_in_minutes: Lifetime of the link, shown to the user.

        Returns:
            True if the message was sent.
        """
        subject = "Restablecer contraseña"
        text_body = (
            f"Hola {user_name},\n\n"
            f"Recibimos una solicitud para restablecer tu contraseña.\n"
            f"Abre el siguiente enlace para elegir una nueva:\n\n{reset_link}\n\n"
            f"El enlace expira en {expires_in_minutes} minutos. "
            f"Si no solicitaste el cambio, ignora este mensaje.\n"
        )
        html_body = (
            f"<p>Hola {user_name},</p>"
            f"<p>Recibimos una solicitud para restablecer tu contraseña.</p>"
            f'<p><a href="{reset_link}">Restablecer contraseña</a></p>'
            f"<p>El enlace expira en {expires_in_minutes} minutos. "
            f"Si no solicitaste el cambio, ignora este mensaje.</p>"
        )
        return await asyncio.to_thread(self._send_email, to, subject, html_body, text_body)

    # PUBLIC_INTERFACE
    async def send_two_factor_code(
        self, to: str, user_name: str, code: str, expires_in_minutes: int
    ) -> bool:
        """
        Send a two-factor verification code.

        Args:
            to: Recipient address.
            user_name: Name used in the greeting.
            code: Numeric code.
            expires_in_minutes: Lifetime of the code, shown to the user.

        Returns:
            True if the message was sent.
        """
        subject = "Código de verificación"
        text_body = (
            f"Hola {user_name},\n\n"
            f"Tu código de verificación es: {code}\n\n"
            f"El código expira en {expires_in_minutes} minutos.\n"
        )
        html_body = (
            f"<p>Hola {user_name},</p>"
            f"<p>Tu código de verificación es: <strong>{code}</strong></p>"
            f"<p>El código expira en {expires_in_minutes} minutos.</p>"
        )
        return await asyncio.to_thread(self._send_email, to, subject, html_body, text_body)
