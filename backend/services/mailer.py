"""
Service email : envoi SMTP des codes OTP, emails de bienvenue et notifications.
"""
import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Échec de transport SMTP pour un destinataire."""


class Mailer:
    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "no-reply@flavorfleet.local",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "Mailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            sender=settings.EMAIL_FROM,
            use_tls=settings.SMTP_USE_TLS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        """
        Envoie un email HTML. Retourne False si SMTP n'est pas configuré,
        lève MailDeliveryError si le transport échoue.
        """
        if not self.configured:
            logger.warning(f"SMTP non configuré — email '{subject}' non envoyé à {to}")
            return False

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html_body, subtype="html")

        # smtplib est bloquant : on sort de la boucle asyncio
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(f"Envoi vers {to} échoué : {e}") from e
        logger.info(f"Email '{subject}' envoyé à {to}")
        return True

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)
