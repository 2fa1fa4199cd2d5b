"""
Fixtures shared by service-level integration tests.
"""

import pytest

from services.notifications import drain_pending_sends


@pytest.fixture(autouse=True)
async def _drain_invitation_emails():
    """Let fire-and-forget e-mail tasks finish inside the test's event loop."""
    yield
    await drain_pending_sends()
