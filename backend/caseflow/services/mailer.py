"""
Outbound Mail Transport

`send(address, subject, body) -> {success, message_id, error}`

Mailers that set `supports_attachments` also take `attachments=[(filename,
content, mime type)]`; the dispatcher only passes attachments to those.

SmtpMailer delivers over SMTP/SMTPS with a bounded socket timeout.
LogOnlyMailer is used when no SMTP host is configured: it records the
message in the log and reports success, which keeps local runs usable.
"""
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any, Dict, Iterable, Optional, Tuple

from .. import config

logger = logging.getLogger(__name__)

# (filename, content, mime type)
Attachment = Tuple[str, bytes, str]


class SmtpMailer:
    supports_attachments = True

    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        sender: str = config.MAIL_DEFAULT_SENDER,
        use_ssl: bool = False,
        use_tls: bool = True,
        timeout: float = config.MAIL_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_ssl = use_ssl
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(
        self, address: str, subject: str, body: str, attachments: Optional[Iterable[Attachment]]
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = address
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid(domain=self.sender.split("@")[-1] or None)
        message.set_content(body)
        for filename, content, mime_type in attachments or ():
            maintype, _, subtype = mime_type.partition("/")
            message.add_attachment(content, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)
        return message

    def send(
        self,
        address: str,
        subject: str,
        body: str,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> Dict[str, Any]:
        message = self._build_message(address, subject, body, attachments)
        try:
            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=ssl.create_default_context())
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if not self.use_ssl and self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(f"SMTP delivery to {address} failed: {exc}")
            return {"success": False, "message_id": None, "error": str(exc)}

        logger.info(f"SMTP delivered '{subject}' to {address}")
        return {"success": True, "message_id": message["Message-ID"], "error": None}


class LogOnlyMailer:
    """Records messages in the log instead of delivering them."""

    supports_attachments = True

    def send(
        self,
        address: str,
        subject: str,
        body: str,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> Dict[str, Any]:
        message_id = make_msgid(domain="caseflow.local")
        attached = [name for name, _, _ in attachments or ()]
        logger.info(f"SMTP not configured; logged '{subject}' for {address} (attachments={attached})")
        return {"success": True, "message_id": message_id, "error": None}


def build_mailer():
    """Mailer for the configured environment."""
    if not config.SMTP_HOST:
        return LogOnlyMailer()
    return SmtpMailer(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        username=config.SMTP_USERNAME,
        password=config.SMTP_PASSWORD,
        sender=config.MAIL_DEFAULT_SENDER,
        use_ssl=config.SMTP_USE_SSL,
        use_tls=config.SMTP_USE_TLS,
        timeout=config.MAIL_TIMEOUT_SECONDS,
    )
