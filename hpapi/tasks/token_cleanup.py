"""TOKEN CLEANUP TASKS

Prune refresh tokens and password reset tokens that can no longer be used.
Account locks are never touched here: they expire lazily at the next login.
"""

import logging

from celery import Task
import rollbar

logger = logging.getLogger(__name__)


class TokenCleanupTask(Task):
    """Base task for token cleanup"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Token cleanup task failed: {exc}")
        rollbar.report_exc_info()


# Import celery after other imports to avoid circular dependency
from hpapi import celery  # noqa: E402


@celery.task(base=TokenCleanupTask, bind=True)
def cleanup_expired_refresh_tokens(self):
    """Celery task to clean up expired refresh tokens"""
    logger.info("[TASK]: Starting cleanup of expired refresh tokens")

    try:
        from hpapi import app
        from hpapi.services.refresh_token_service import RefreshTokenService

        with app.app_context():
            cleaned_count = RefreshTokenService.cleanup_expired_tokens()

        logger.info(
            f"[TASK]: Successfully cleaned up {cleaned_count} expired refresh tokens"
        )
        return {
            "status": "success",
            "cleaned_count": cleaned_count,
            "message": f"Cleaned up {cleaned_count} expired refresh tokens",
        }
    except Exception as error:
        logger.error(f"[TASK]: Error cleaning up expired refresh tokens: {str(error)}")
        raise self.retry(exc=error, countdown=60, max_retries=3) from error


@celery.task(base=TokenCleanupTask, bind=True)
def cleanup_expired_password_reset_tokens(self, days_old=7):
    """Delete password reset tokens created more than ``days_old`` days ago"""
    logger.info("[TASK]: Starting cleanup of old password reset tokens")

    try:
        from hpapi import app
        from hpapi.models.password_reset_token import PasswordResetToken

        with app.app_context():
            cleaned_count = PasswordResetToken.cleanup_expired_tokens(
                days_old=days_old
            )

        logger.info(f"[TASK]: Removed {cleaned_count} old password reset tokens")
        return {"status": "success", "cleaned_count": cleaned_count}
    except Exception as error:
        logger.error(f"[TASK]: Error cleaning up password reset tokens: {error}")
        raise self.retry(exc=error, countdown=60, max_retries=3) from error
