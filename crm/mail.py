import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional

from pydantic import BaseModel

from crm.config import settings

logger = logging.getLogger(__name__)

class EmailDeliveryError(Exception):
    """The SMTP server refused the message or could not be reached."""

class MailAttachment(BaseModel):
    filename: str
    path: str
    content_type: Optional[str] = None

class OutgoingEmail(BaseModel):
    to: str
    subject: str
    html: str
    cc: Optional[str] = None
    bcc: Optional[str] = None
    reply_to: Optional[str] = None
    sender_name: Optional[str] = None
    attachments: List[MailAttachment] = []

def _split_addresses(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [addr.strip() for addr in value.split(",") if addr.strip()]

class SmtpMailer:
    def __init__(
        self,
        host: str = settings.SMTP_HOST,
        port: int = settings.SMTP_PORT,
        username: Optional[str] = settings.SMTP_USERNAME,
        password: Optional[str] = settings.SMTP_PASSWORD,
        from_email: Optional[str] = settings.SMTP_FROM_EMAIL,
        use_tls: bool = settings.SMTP_USE_TLS,
        brand: str = settings.MAIL_BRAND,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_tls = use_tls
        self.brand = brand

    def build_message(self, email: OutgoingEmail) -> EmailMessage:
        msg = EmailMessage()
        display = f"{email.sender_name} from {self.brand}" if email.sender_name else self.brand
        msg["From"] = formataddr((display, self.from_email or ""))
        msg["To"] = email.to
        if email.cc:
            msg["Cc"] = email.cc
        if email.reply_to:
            msg["Reply-To"] = email.reply_to
        msg["Subject"] = email.subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(email.html, subtype="html")

        for attachment in email.attachments:
            maintype, _, subtype = (attachment.content_type or "application/octet-stream").partition("/")
            with open(attachment.path, "rb") as fh:
                msg.add_attachment(fh.read(), maintype=maintype, subtype=subtype or "octet-stream", filename=attachment.filename)
        return msg

    def send(self, email: OutgoingEmail) -> None:
        if not self.from_email:
            raise EmailDeliveryError("SMTP sender is not configured")

        recipients = _split_addresses(email.to) + _split_addresses(email.cc) + _split_addresses(email.bcc)
        try:
            msg = self.build_message(email)
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", email.to, exc)
            raise EmailDeliveryError(str(exc)) from exc

        logger.info("Email sent to %s", email.to)

def get_mailer() -> SmtpMailer:
    return SmtpMailer()
