"""
Resend email service adapter.
"""

import logging
from html import escape
from typing import Optional

import resend

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


class ResendEmailService:
    """Email service using Resend API."""

    def __init__(self):
        if settings.resend_api_key:
            resend.api_key = settings.resend_api_key
        self._from_email = settings.resend_from_email
        self._frontend_url = settings.frontend_url

    def invitation_url(self, raw_token: str) -> str:
        """Link the invitee opens to preview and accept an invitation."""
        return f"{self._frontend_url}/invitations/{raw_token}"

    async def send_album_invitation_email(
        self,
        to_email: str,
        inviter_name: str,
        album_name: str,
        role: str,
        invitation_url: str,
        expires_in_days: int,
        note: Optional[str] = None,
    ) -> bool:
        """
        Send album invitation email.

        Args:
            to_email: Recipient email address
            inviter_name: Name of the person who sent the invitation
            album_name: Name of the album
            role: Role the invitee will have in the album
            invitation_url: URL to accept the invitation
            expires_in_days: Days until the link stops working
            note: Optional personal message from the inviter

        Returns:
            True if sent successfully, False otherwise
        """
        if not settings.resend_api_key:
            logger.info("[DEV] Album invitation email for %s: %s", to_email, invitation_url)
            return True

        try:
            resend.Emails.send({
                "from": self._from_email,
                "to": to_email,
                "subject": f"You've been invited to the album {album_name}",
                "html": self._get_album_invitation_email_html(
                    inviter_name, album_name, role, invitation_url, expires_in_days, note
                ),
            })
            return True
        except Exception as e:
            logger.error("Failed to send album invitation email: %s", e)
            return False

    def _get_album_invitation_email_html(
        self,
        inviter_name: str,
        album_name: str,
        role: str,
        invitation_url: str,
        expires_in_days: int,
        note: Optional[str],
    ) -> str:
        """Generate album invitation email HTML."""
        # Format role nicely
        role_display = role.title()
        inviter_name = escape(inviter_name)
        album_name = escape(album_name)

        note_html = ""
        if note:
            note_html = f"""
                <div style="background: #FFF8F0; border-left: 4px solid #da7756; padding: 16px; margin-bottom: 24px;">
                    <p style="color: #4A4A68; margin: 0; font-size: 14px; line-height: 1.6;">{escape(note)}</p>
                </div>
            """

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #FFF8F0; padding: 40px 20px;">
            <div style="max-width: 560px; margin: 0 auto; background: white; border-radius: 16px; padding: 40px; box-shadow: 0 2px 8px rgba(0,0,0,0.05);">
                <h2 style="color: #1A1A2E; font-size: 20px; margin-bottom: 16px;">You've been invited to an album!</h2>

                <p style="color: #4A4A68; line-height: 1.6; margin-bottom: 24px;">
                    {inviter_name} has invited you to join <strong>{album_name}</strong>.
                </p>

                <div style="background: #F8F9FA; border-radius: 12px; padding: 24px; margin-bottom: 24px;">
                    <h3 style="color: #1A1A2E; font-size: 16px; margin: 0 0 16px;">Invitation Details:</h3>
                    <ul style="color: #4A4A68; margin: 0; padding-left: 20px; line-height: 1.8;">
                        <li><strong>Album:</strong> {album_name}</li>
                        <li><strong>Your role:</strong> {role_display}</li>
                        <li><strong>Invited by:</strong> {inviter_name}</li>
                    </ul>
                </div>
                {note_html}
                <div style="text-align: center; margin: 32px 0;">
                    <a href="{invitation_url}" style="display: inline-block; background: #da7756; color: white; text-decoration: none; padding: 14px 32px; border-radius: 12px; font-weight: 500;">
                        View Invitation
                    </a>
                </div>

                <hr style="border: none; border-top: 1px solid #F1F3F5; margin: 32px 0;">

                <p style="color: #8B8BA7; font-size: 12px; text-align: center;">
                    This invitation will expire in {expires_in_days} days.<br>
                    If you didn't expect this invitation, you can safely ignore this email.
                </p>
            </div>
        </body>
        </html>
        """


# Singleton instance
email_service = ResendEmailService()
