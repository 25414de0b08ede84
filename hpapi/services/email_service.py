"""EMAIL SERVICE"""

import logging
import os

import rollbar
from sparkpost import SparkPost

from hpapi.config import SETTINGS
from hpapi.errors import EmailError

logger = logging.getLogger(__name__)


class EmailService:
    """MailService Class"""

    @staticmethod
    def send_html_email(
        recipients=None,
        html="",
        from_email=None,
        subject="[Health Practice] Account notice",
    ):
        if recipients is None:
            recipients = []
        from_email = from_email or SETTINGS.get("EMAIL_FROM")

        sparkpost_api_key = os.getenv("SPARKPOST_API_KEY")
        if not sparkpost_api_key:
            logger.warning(
                f"Cannot send email with subject '{subject}' to {len(recipients)} "
                "recipients: SPARKPOST_API_KEY is not configured. Email "
                "functionality is disabled."
            )
            return {"errors": ["Email disabled: SPARKPOST_API_KEY not configured"]}

        logger.debug(f"Sending email with subject {subject}")
        try:
            sp = SparkPost()
            return sp.transmissions.send(
                recipients=recipients, html=html, from_email=from_email, subject=subject
            )
        except Exception as error:
            logger.error(f"Failed to send email with subject '{subject}': {error}")
            rollbar.report_exc_info()
            raise EmailError(f"Failed to send email: {error}") from error

    @staticmethod
    def send_password_reset(user, token):
        reset_link = f"{SETTINGS.get('PASSWORD_RESET_URL')}?token={token}"
        hours = SETTINGS.get("PASSWORD_RESET_TOKEN_EXPIRY_HOURS", 1)
        return EmailService.send_html_email(
            recipients=[user.email],
            html=(
                "<p>We received a request to reset the password for your "
                "Health Practice account.</p>"
                f'<p><a href="{reset_link}">Reset your password</a></p>'
                f"<p>This link expires in {hours} hour(s) and can only be used "
                "once. If you did not ask for a reset you can ignore this "
                "email.</p>"
            ),
            subject="[Health Practice] Password reset",
        )

    @staticmethod
    def send_temporary_password(user, password):
        return EmailService.send_html_email(
            recipients=[user.email],
            html=(
                "<p>An administrator issued a temporary password for your "
                "Health Practice account:</p>"
                f"<p><strong>{password}</strong></p>"
                "<p>You will be asked to choose a new password when you next "
                "log in.</p>"
            ),
            subject="[Health Practice] Temporary password",
        )
