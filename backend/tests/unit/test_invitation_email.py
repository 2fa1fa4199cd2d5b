"""
Unit tests for invitation e-mail rendering and fire-and-forget dispatch.
"""

import logging

import pytest

from adapters.email.resend_adapter import ResendEmailService
from services.notifications import dispatch_invitation_email, drain_pending_sends


class RecordingSender:
    """Stand-in for the Resend adapter that records sends."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    def invitation_url(self, raw_token: str) -> str:
        return f"https://albums.test/invitations/{raw_token}"

    async def send_album_invitation_email(self, **kwargs) -> bool:
        if self.fail:
            raise ConnectionError("mail provider down")
        self.sent.append(kwargs)
        return True


def dispatch(sender, **overrides):
    kwargs = {
        "to_email": "guest@example.com",
        "inviter_name": "Olivia",
        "album_name": "Family",
        "role": "viewer",
        "raw_token": "abc123",
        "expires_in_days": 7,
        "sender": sender,
    }
    kwargs.update(overrides)
    return dispatch_invitation_email(**kwargs)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_sends_link(self):
        sender = RecordingSender()

        task = dispatch(sender, note="See you there")
        await task

        assert sender.sent[0]["to_email"] == "guest@example.com"
        assert sender.sent[0]["invitation_url"] == "https://albums.test/invitations/abc123"
        assert sender.sent[0]["note"] == "See you there"

    @pytest.mark.asyncio
    async def test_failed_send_is_logged_not_raised(self, caplog):
        caplog.set_level(logging.ERROR, logger="services.notifications")

        task = dispatch(RecordingSender(fail=True))
        await drain_pending_sends()

        assert task.done()
        assert "Invitation e-mail dispatch failed" in caplog.text

    def test_no_running_loop_drops_send(self):
        sender = RecordingSender()

        assert dispatch(sender) is None
        assert sender.sent == []


class TestEmailTemplate:
    def test_values_are_escaped(self):
        html = ResendEmailService()._get_album_invitation_email_html(
            inviter_name="<script>",
            album_name="Tom & Jerry",
            role="contributor",
            invitation_url="https://albums.test/invitations/t",
            expires_in_days=7,
            note="<b>hi</b>",
        )

        assert "<script>" not in html
        assert "Tom &amp; Jerry" in html
        assert "&lt;b&gt;hi&lt;/b&gt;" in html
        assert "Contributor" in html

    def test_invitation_url_uses_frontend(self):
        service = ResendEmailService()
        assert service.invitation_url("tok").endswith("/invitations/tok")
