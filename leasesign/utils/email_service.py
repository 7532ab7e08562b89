# leasesign/utils/email_service.py

import asyncio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, List

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, FileSystemLoader, select_autoescape

from leasesign.core.config import settings
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)


class EmailService:
    """
    Sends transactional email through Amazon SES using Jinja2 HTML templates.
    """
    def __init__(self):
        self.ses_client = boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
        self.sender = settings.aws_ses_sender_email

        template_path = Path(__file__).parent.parent / "templates" / "emails"
        self.jinja_env = Environment(
            loader=FileSystemLoader(template_path),
            autoescape=select_autoescape(["html"]),
        )

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """Render an HTML email template using Jinja2."""
        try:
            template = self.jinja_env.get_template(template_name)
            return template.render(context)
        except Exception as e:
            logger.error("Error rendering email template", template=template_name, error_message=str(e))
            raise

    async def _send_email_async(self, to_emails: List[str], subject: str, html_body: str):
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(to_emails)
        msg.attach(MIMEText(html_body, "html"))

        kwargs = {
            "Source": self.sender,
            "Destinations": to_emails,
            "RawMessage": {"Data": msg.as_string()},
        }
        if settings.aws_ses_configuration_set:
            kwargs["ConfigurationSetName"] = settings.aws_ses_configuration_set

        try:
            # boto3 is synchronous
            await asyncio.to_thread(self.ses_client.send_raw_email, **kwargs)
            logger.info("Email sent successfully", subject=subject, to=", ".join(to_emails))
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to send email", subject=subject, error_message=str(e))
            raise

    async def send_templated_email(
        self,
        *,
        to_emails: List[str],
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ):
        """
        Renders an email from a template and sends it.

        Args:
            to_emails (List[str]): List of recipient email addresses.
            subject (str): Subject of the email.
            template_name (str): Name of the Jinja2 template file.
            context (Dict[str, Any]): Context variables for rendering the template.
        """
        if not self.sender:
            logger.error("Email sending is disabled: AWS_SES_SENDER_EMAIL is not configured")
            return

        html_body = self.render_template(template_name, context)
        await self._send_email_async(to_emails=to_emails, subject=subject, html_body=html_body)


# Create a single, reusable instance of the service
email_service = EmailService()
