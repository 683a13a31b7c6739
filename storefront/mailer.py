import logging
import mimetypes
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from storefront.config import SmtpSettings
from storefront.errors import MailDeliveryError

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "email"


class Mailer:
    """Render a named HTML template and deliver it over SMTP."""

    def __init__(self, settings: SmtpSettings, template_dir: Path = EMAIL_TEMPLATE_DIR):
        self.settings = settings
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template: str, data: Any) -> str:
        try:
            return self.env.get_template(f"{template}.html").render(data=data)
        except TemplateError as e:
            logger.error(f"Could not render email template {template}: {e}")
            raise MailDeliveryError(f"email template {template} could not be rendered") from e

    def build_message(
        self,
        from_addr: str,
        to: str,
        subject: str,
        body: str,
        attachments: Optional[Iterable[Path]] = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = from_addr
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body, subtype="html")

        for attachment in attachments or []:
            path = Path(attachment)
            ctype, _ = mimetypes.guess_type(path.name)
            maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
            try:
                payload = path.read_bytes()
            except OSError as e:
                logger.error(f"Could not read attachment {path}: {e}")
                raise MailDeliveryError(f"attachment {path.name} could not be read") from e
            msg.add_attachment(payload, maintype=maintype, subtype=subtype, filename=path.name)

        return msg

    def send(
        self,
        from_addr: str,
        to: str,
        subject: str,
        template: str,
        data: Any = None,
        attachments: Optional[Iterable[Path]] = None,
    ) -> EmailMessage:
        body = self.render(template, data)
        msg = self.build_message(from_addr, to, subject, body, attachments)

        smtp = self.settings
        logger.info(f"Connecting to SMTP server {smtp.host} on port {smtp.port}")
        try:
            if smtp.port == 465:
                server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout)
            else:
                server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout)
            with server:
                if smtp.port != 465 and smtp.use_tls:
                    server.starttls()
                if smtp.username:
                    server.login(smtp.username, smtp.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            raise MailDeliveryError() from e

        logger.info(f"Email sent to {to}: {subject}")
        return msg
