"""
Outgoing mail.

Three backends, picked by ``MAIL_BACKEND``:

- ``console``: log the message and drop it (development default).
- ``memory``: append to ``Mailer.outbox`` (tests).
- ``smtp``: deliver through ``smtplib`` in a worker thread.

Bodies are plain text.  Delivery failures raise ``MailDeliveryError`` so
callers can decide whether the mail was essential to the operation.
"""
import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText

from campusnet.config import settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


@dataclass
class OutgoingMail:
    to: str
    subject: str
    body: str


class Mailer:
    def __init__(self, backend: str | None = None) -> None:
        self.backend = (backend or settings.MAIL_BACKEND).lower()
        self.outbox: list[OutgoingMail] = []

    async def send(self, to: str, subject: str, body: str) -> None:
        mail = OutgoingMail(to=to, subject=subject, body=body)
        if self.backend == "memory":
            self.outbox.append(mail)
            return
        if self.backend == "smtp":
            try:
                await asyncio.to_thread(self._send_smtp, mail)
            except (smtplib.SMTPException, OSError) as e:
                logger.warning("SMTP delivery to %s failed: %s", to, e)
                raise MailDeliveryError(str(e)) from e
            logger.info("Mail sent to %s: %s", to, subject)
            return
        logger.info("Mail to %s: %s\n%s", to, subject, body)

    def _send_smtp(self, mail: OutgoingMail) -> None:
        message = MIMEText(mail.body)
        message["From"] = settings.MAIL_FROM
        message["To"] = mail.to
        message["Subject"] = mail.subject
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USERNAME:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)

    # ------------------------------------------------------------------
    # Account mails
    # ------------------------------------------------------------------

    async def send_verification(self, to: str, name: str, token: str) -> None:
        link = f"{settings.FRONTEND_URL.rstrip('/')}/verify-email/{token}"
        await self.send(
            to,
            "Verify your CampusNet account",
            f"Hi {name},\n\n"
            f"Confirm your email address by opening the link below:\n\n{link}\n\n"
            f"The link expires in {settings.VERIFICATION_TOKEN_TTL_HOURS} hours.\n",
        )

    async def send_welcome(self, to: str, name: str) -> None:
        await self.send(
            to,
            "Welcome to CampusNet",
            f"Hi {name},\n\nYour email is verified. Set up your profile and start connecting.\n",
        )

    async def send_login_notice(self, to: str, name: str, when: str) -> None:
        await self.send(
            to,
            "New sign-in to your CampusNet account",
            f"Hi {name},\n\nYour account was signed in at {when} (UTC).\n"
            "If this was not you, reset your password right away.\n",
        )

    async def send_reset_otp(self, to: str, name: str, otp: str) -> None:
        await self.send(
            to,
            "Your CampusNet password reset code",
            f"Hi {name},\n\nYour password reset code is {otp}.\n"
            f"It expires in {settings.RESET_OTP_TTL_MINUTES} minutes.\n",
        )

    async def send_password_changed(self, to: str, name: str) -> None:
        await self.send(
            to,
            "Your CampusNet password was changed",
            f"Hi {name},\n\nYour password has been reset. "
            "If you did not do this, contact support.\n",
        )


mailer = Mailer()


def get_mailer() -> Mailer:
    return mailer
