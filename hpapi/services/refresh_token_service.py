"""REFRESH TOKEN SERVICE"""

import logging

from flask import has_request_context, request
from flask_jwt_extended import create_access_token

from hpapi import db
from hpapi.models.refresh_token import RefreshToken
from hpapi.utils.clock import utcnow

logger = logging.getLogger(__name__)


class RefreshTokenService:
    """Refresh Token Service"""

    @staticmethod
    def create_refresh_token(user_id, device_info=None):
        """Create a new refresh token for a user"""
        logger.info(f"[SERVICE]: Creating refresh token for user {user_id}")

        if device_info is None:
            device_info = RefreshTokenService._get_device_info()

        refresh_token = RefreshToken(user_id=user_id, device_info=device_info)

        try:
            db.session.add(refresh_token)
            db.session.commit()
            logger.info(
                f"[SERVICE]: Refresh token created successfully for user {user_id}"
            )
            return refresh_token
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error creating refresh token: {error}")
            raise error

    @staticmethod
    def validate_refresh_token(token_string):
        """Validate a refresh token and return the associated user"""
        logger.info("[SERVICE]: Validating refresh token")

        refresh_token = RefreshToken.query.filter_by(token=token_string).first()

        if not refresh_token:
            logger.warning("[SERVICE]: Refresh token not found")
            return None, None

        if not refresh_token.is_valid():
            logger.warning("[SERVICE]: Refresh token is invalid (expired or revoked)")
            return None, None

        refresh_token.update_last_used()
        try:
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error updating refresh token usage: {error}")
            raise error

        user = refresh_token.user
        logger.info(f"[SERVICE]: Refresh token validated for user {user.email}")
        return refresh_token, user

    @staticmethod
    def refresh_access_token(refresh_token_string):
        """Generate a new access token using a valid refresh token"""
        logger.info("[SERVICE]: Refreshing access token")

        refresh_token, user = RefreshTokenService.validate_refresh_token(
            refresh_token_string
        )

        if not refresh_token or not user:
            logger.warning("[SERVICE]: Invalid refresh token provided")
            return None, None

        access_token = create_access_token(identity=str(user.id))

        logger.info(f"[SERVICE]: Access token refreshed for user {user.email}")
        return access_token, user

    @staticmethod
    def revoke_refresh_token(token_string, user_id=None):
        """Revoke a specific refresh token, optionally only if ``user_id`` owns it"""
        logger.info("[SERVICE]: Revoking refresh token")

        query = RefreshToken.query.filter_by(token=token_string)
        if user_id is not None:
            query = query.filter(RefreshToken.user_id == user_id)
        refresh_token = query.first()

        if not refresh_token:
            logger.warning("[SERVICE]: Refresh token not found for revocation")
            return False

        refresh_token.revoke()

        try:
            db.session.commit()
            logger.info("[SERVICE]: Refresh token revoked successfully")
            return True
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error revoking refresh token: {error}")
            raise error

    @staticmethod
    def revoke_all_user_tokens(user_id, commit=True):
        """Revoke all refresh tokens for a specific user

        With ``commit=False`` the revocation joins the caller's transaction,
        as it does when a password is replaced.
        """
        logger.info(f"[SERVICE]: Revoking all refresh tokens for user {user_id}")

        count = RefreshToken.query.filter(
            RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False)
        ).update({RefreshToken.is_revoked: True}, synchronize_session=False)

        if not commit:
            return count

        try:
            db.session.commit()
            logger.info(
                f"[SERVICE]: Revoked {count} refresh tokens for user {user_id}"
            )
            return count
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error revoking user tokens: {error}")
            raise error

    @staticmethod
    def cleanup_expired_tokens():
        """Clean up expired refresh tokens (should be run periodically)"""
        logger.info("[SERVICE]: Cleaning up expired refresh tokens")

        try:
            count = RefreshToken.query.filter(
                RefreshToken.expires_at <= utcnow()
            ).delete(synchronize_session=False)
            db.session.commit()
            logger.info(f"[SERVICE]: Cleaned up {count} expired refresh tokens")
            return count
        except Exception as error:
            db.session.rollback()
            logger.error(f"[SERVICE]: Error cleaning up expired tokens: {error}")
            raise error

    @staticmethod
    def _get_device_info():
        """Extract device information from the request"""
        if has_request_context():
            user_agent = request.headers.get("User-Agent", "Unknown")
            ip_address = request.remote_addr or "Unknown"
        else:
            user_agent = "No request context"
            ip_address = "127.0.0.1"

        # Truncate to fit database field
        return f"IP: {ip_address} | UA: {user_agent}"[:500]
