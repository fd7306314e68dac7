from __future__ import annotations

import logging
import smtplib
from contextlib import contextmanager
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterator

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    mimetype: str
    content: bytes


class EmailClient:
    """
    Client SMTP minimal. Une seule tentative par appel : les erreurs
    (smtplib.SMTPException, OSError) remontent à la couche de retry.
    """

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool = False,
        timeout: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "EmailClient | None":
        if not settings.SMTP_HOST:
            return None
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_ssl=settings.SMTP_USE_SSL,
        )

    @contextmanager
    def _connection(self) -> Iterator[smtplib.SMTP]:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        try:
            if not self.use_ssl:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            yield server
        finally:
            try:
                server.quit()
            except smtplib.SMTPException as exc:
                logger.warning("Error closing SMTP connection: %s", exc)

    @staticmethod
    def build_message(
        sender: str,
        recipients: list[str],
        subject: str,
        text_body: str,
        attachments: list[Attachment] | None = None,
    ) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body or "", "plain"))

        for att in attachments or []:
            maintype, subtype = att.mimetype.split("/", 1)
            part = MIMEBase(maintype, subtype)
            part.set_payload(att.content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", f'attachment; filename="{att.filename}"')
            msg.attach(part)
        return msg

    def send_email(
        self,
        sender: str,
        recipients: list[str],
        subject: str,
        text_body: str,
        attachments: list[Attachment] | None = None,
    ) -> None:
        msg = self.build_message(sender, recipients, subject, text_body, attachments)
        with self._connection() as server:
            server.sendmail(sender, recipients, msg.as_string())
        logger.info("Email %r sent to %s", subject, ", ".join(recipients))
