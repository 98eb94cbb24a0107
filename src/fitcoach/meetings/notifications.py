"""Meeting-start notifications over an HTTP mail relay.

The backend does not render or deliver email itself. MeetingNotifier posts
a JSON message to a relay endpoint (NOTIFICATION_WEBHOOK_URL) which owns
templating and SMTP. Delivery errors propagate as httpx.HTTPError.
"""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger(__name__)


class MeetingNotifier:
    """Async client for the notification relay.

    Args:
        webhook_url: Relay endpoint accepting POSTed JSON messages.
        timeout: Request timeout in seconds.
    """

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    async def send_meeting_start(
        self,
        recipient_email: str,
        meeting_title: str,
        join_link: str,
        start_time: str,
        end_time: str,
        date: str,
    ) -> None:
        """Tell a participant their meeting is starting.

        Raises:
            httpx.HTTPError: On connection failure or a non-2xx relay response.
        """
        payload = {
            "type": "meeting_start",
            "to": recipient_email,
            "subject": f"Your meeting \"{meeting_title}\" is starting",
            "meeting": {
                "title": meeting_title,
                "date": date,
                "start_time": start_time,
                "end_time": end_time,
                "join_link": join_link,
            },
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._webhook_url, json=payload)
            response.raise_for_status()
        logger.info(
            "notification.meeting_start_sent",
            recipient=recipient_email,
            status_code=response.status_code,
        )
