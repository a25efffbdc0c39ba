# =============================================================================
# Email Delivery Integration (AWS SES)
# =============================================================================
#
# Setup:
#   1. Verify your sending email in AWS SES console
#   2. Set env vars:
#      - AWS_SES_FROM_EMAIL=noreply@yourdomain.com
#      - AWS_ACCESS_KEY_ID=...
#      - AWS_SECRET_ACCESS_KEY=...
#      - AWS_REGION=us-east-1
#
# Without these the service logs what it would have sent and returns False,
# which is enough for local development.
#
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hestia.config import Settings, get_settings
from hestia.core.errors import DependencyUnavailable
from hestia.core.utils import bounded

logger = logging.getLogger(__name__)


# =============================================================================
# Email Templates
# =============================================================================

_BUTTON = (
    'style="background: #C8553D; color: white; padding: 12px 30px; '
    'text-decoration: none; border-radius: 6px; display: inline-block;"'
)
_BODY = (
    "style=\"font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; "
    'max-width: 600px; margin: 0 auto; padding: 20px;"'
)

TEMPLATES = {
    "verify_email": {
        "subject": "Confirm your Hestia email address",
        "html": f"""
        <html>
        <body {_BODY}>
            <h1 style="color: #333;">Welcome to Hestia, {{name}}!</h1>
            <p>Confirm your email address to unlock shared recipes and shopping lists.</p>
            <p style="text-align: center; margin: 30px 0;">
                <a href="{{verify_url}}" {_BUTTON}>Verify Email</a>
            </p>
            <p style="color: #666; font-size: 14px;">Or copy this link: {{verify_url}}</p>
            <p style="color: #666; font-size: 14px;">This link expires in {{expires_hours}} hours.</p>
        </body>
        </html>
        """,
        "text": """
Welcome to Hestia, {name}!

Confirm your email address by visiting:
{verify_url}

This link expires in {expires_hours} hours.
        """,
    },

    "password_reset": {
        "subject": "Reset your Hestia password",
        "html": f"""
        <html>
        <body {_BODY}>
            <h1 style="color: #333;">Reset Your Password</h1>
            <p>We received a request to reset your password. Choose a new one below:</p>
            <p style="text-align: center; margin: 30px 0;">
                <a href="{{reset_url}}" {_BUTTON}>Reset Password</a>
            </p>
            <p style="color: #666; font-size: 14px;">Or copy this link: {{reset_url}}</p>
            <p style="color: #666; font-size: 14px;">This link expires in {{expires_minutes}} minutes.</p>
            <p style="color: #666; font-size: 14px;">If you didn't request this, you can safely ignore this email.</p>
        </body>
        </html>
        """,
        "text": """
Reset Your Password

We received a request to reset your password. Visit this link to choose a new one:
{reset_url}

This link expires in {expires_minutes} minutes.

If you didn't request this, you can safely ignore this email.
        """,
    },

    "email_verified": {
        "subject": "Email verified - your Hestia kitchen is ready",
        "html": f"""
        <html>
        <body {_BODY}>
            <h1 style="color: #333;">You're all set!</h1>
            <p>Your email has been verified.</p>
            <p style="text-align: center; margin: 30px 0;">
                <a href="{{app_url}}" {_BUTTON}>Open Hestia</a>
            </p>
        </body>
        </html>
        """,
        "text": """
You're all set!

Your email has been verified. Open Hestia at: {app_url}
        """,
    },
}


# =============================================================================
# Email Service
# =============================================================================

class EmailService:
    """Send transactional emails via AWS SES."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = None

    @property
    def client(self):
        """Lazy-load SES client."""
        if self._client is None and self.settings.use_aws:
            self._client = boto3.client(
                "ses",
                region_name=self.settings.aws_region,
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
            )
        return self._client

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return self.settings.use_aws and bool(self.settings.aws_ses_from_email)

    def _send_raw(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        response = self.client.send_email(
            Source=self.settings.aws_ses_from_email,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {
                    "Html": {"Data": html_body, "Charset": "UTF-8"},
                    "Text": {"Data": text_body, "Charset": "UTF-8"},
                },
            },
        )
        return response["MessageId"]

    async def send(
        self,
        to: str,
        template: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Send an email using a template.

        Returns True if SES accepted the message. Delivery problems are
        logged and reported as False; they never fail the calling request.
        """
        if template not in TEMPLATES:
            logger.error("Unknown email template: %s", template)
            return False

        tpl = TEMPLATES[template]
        data = data or {}

        if not self.is_configured:
            logger.warning("Email not configured - would send '%s' to %s", template, to)
            return False

        try:
            message_id = await bounded(
                asyncio.to_thread(
                    self._send_raw,
                    to,
                    tpl["subject"],
                    tpl["html"].format(**data),
                    tpl["text"].format(**data),
                ),
                self.settings.dependency_timeout_seconds,
                "email delivery",
            )
        except (ClientError, BotoCoreError, DependencyUnavailable) as e:
            logger.error("Failed to send '%s' email to %s: %s", template, to, e)
            return False
        except KeyError as e:
            logger.error("Missing template variable for '%s': %s", template, e)
            return False

        logger.info("Email sent to %s: %s (MessageId: %s)", to, template, message_id)
        return True

    async def send_verification(self, email: str, name: str, verify_token: str) -> bool:
        """Send the email-verification link."""
        return await self.send(
            to=email,
            template="verify_email",
            data={
                "name": name or email,
                "verify_url": f"{self.settings.app_url}/verify-email?token={verify_token}",
                "expires_hours": self.settings.email_verification_expire_hours,
            },
        )

    async def send_password_reset(self, email: str, reset_token: str) -> bool:
        """Send password reset email."""
        return await self.send(
            to=email,
            template="password_reset",
            data={
                "reset_url": f"{self.settings.app_url}/reset-password?token={reset_token}",
                "expires_minutes": self.settings.password_reset_expire_minutes,
            },
        )

    async def send_email_verified(self, email: str) -> bool:
        """Send confirmation that email was verified."""
        return await self.send(
            to=email,
            template="email_verified",
            data={"app_url": self.settings.app_url},
        )
