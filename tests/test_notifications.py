"""Unit tests for MeetingNotifier with a mocked httpx client."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.fitcoach.meetings.notifications import MeetingNotifier

RELAY_URL = "https://relay.example.com/notify"


@pytest.fixture
def notifier():
    return MeetingNotifier(RELAY_URL, timeout=3.0)


@pytest.mark.asyncio
async def test_posts_meeting_start_payload(notifier):
    mock_response = httpx.Response(202, request=httpx.Request("POST", RELAY_URL))

    with patch(
        "httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response
    ) as mock_post:
        await notifier.send_meeting_start(
            recipient_email="alice@example.com",
            meeting_title="Mobility",
            join_link="https://app.example.com/meetings/join/4",
            start_time="10:00",
            end_time="11:00",
            date="2025-06-10",
        )

    url = mock_post.call_args.args[0]
    payload = mock_post.call_args.kwargs["json"]
    assert url == RELAY_URL
    assert payload["type"] == "meeting_start"
    assert payload["to"] == "alice@example.com"
    assert payload["meeting"]["join_link"] == "https://app.example.com/meetings/join/4"
    assert payload["meeting"]["date"] == "2025-06-10"


@pytest.mark.asyncio
async def test_non_2xx_raises(notifier):
    mock_response = httpx.Response(502, request=httpx.Request("POST", RELAY_URL))

    with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response):
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.send_meeting_start(
                recipient_email="alice@example.com",
                meeting_title="Mobility",
                join_link="https://app.example.com/meetings/join/4",
                start_time="10:00",
                end_time="11:00",
                date="2025-06-10",
            )
