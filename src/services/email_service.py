"""
Resend Email Service for subscription and billing notifications

Sends templated emails through the Resend API
https://resend.com/docs/send-with-python
"""

from datetime import datetime, UTC
from typing import Any, Dict, Optional

import resend
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import RESEND_API_KEY, RESEND_FROM_EMAIL, RESEND_FROM_NAME
from src.core.enums import StatsType
from src.services.email_templates import render_template
from src.services.stats_service import try_patch_metrics_stats


class EmailService:
    """
    Templated email sender

    Sending never raises: failures are logged and reported as False so the
    caller's mutation is not affected.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else RESEND_API_KEY
        self.from_email = from_email or RESEND_FROM_EMAIL
        self.from_name = from_name or RESEND_FROM_NAME

        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - email service disabled")
            self.client = None
        else:
            # Resend SDK uses a module-level API key
            resend.api_key = self.api_key
            self.client = resend
            logger.info("Resend email service initialized")

    def is_available(self) -> bool:
        """
        Check if email service is configured and ready

        Returns:
            True if Resend is configured, False otherwise
        """
        return self.client is not None

    async def send_email(
        self,
        template: str,
        to: Optional[str],
        params: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Render and send a template

        Args:
            template: EmailTemplate value
            to: Recipient address
            params: Template parameters
            session: When given, EMAIL_METRICS is patched with the outcome

        Returns:
            True if Resend accepted the email, False otherwise
        """
        template = getattr(template, "value", template)
        sent = await self._send(template, to, params)

        if session is not None:
            await try_patch_metrics_stats(
                session,
                StatsType.EMAIL_METRICS.value,
                {
                    "id": template,
                    "lastStatus": "SENT" if sent else "FAILED",
                    "lastAttemptAt": datetime.now(UTC).isoformat(),
                },
            )

        return sent

    async def _send(self, template: str, to: Optional[str], params: Dict[str, Any]) -> bool:
        if not to:
            logger.warning(f"Email {template} skipped: no recipient")
            return False

        if not self.is_available():
            logger.error(f"Resend not configured - cannot send {template} to {to}")
            return False

        try:
            subject, html = render_template(template, params)

            email_params: resend.Emails.SendParams = {
                "from": f"{self.from_name} <{self.from_email}>",
                "to": [to],
                "subject": subject,
                "html": html,
                "tags": [
                    {"name": "template", "value": template},
                ],
            }

            response = self.client.Emails.send(email_params)

            # Resend returns dict with 'id' on success
            if response and "id" in response:
                logger.info(f"Email {template} sent to {to} (id: {response['id']})")
                return True

            logger.error(f"Failed to send email {template} to {to}: {response}")
            return False

        except Exception as e:
            logger.exception(f"Error sending email {template} via Resend: {e}")
            return False


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Process-wide EmailService"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
