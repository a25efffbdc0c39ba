"""
External service integrations.

- email: AWS SES delivery of verification and password reset links
- sentry: error tracking
"""

from hestia.integrations.email import EmailService
from hestia.integrations.sentry import capture_exception, init_sentry, set_user

__all__ = [
    "EmailService",
    "init_sentry",
    "capture_exception",
    "set_user",
]
