"""
Feishu Notification Module.

Delivers formatted reports to a Feishu (Lark) custom bot webhook.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from config import logger
from report.formatter import ReportMessage


class FeishuNotifier:
    """Notification sink posting messages to a Feishu bot webhook."""

    def __init__(self, timeout: float = 10, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, webhook_url: str, payload: Dict[str, Any]) -> bool:
        try:
            response = await self.client.post(webhook_url, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error({"message": "Feishu request failed", "error": str(e)})
            return False

        if response.status_code == 200 and isinstance(data, dict) and data.get("code") == 0:
            logger.info({"message": "Feishu message sent"})
            return True

        logger.error(
            {
                "message": "Feishu rejected the message",
                "status_code": response.status_code,
                "response": data,
            }
        )
        return False

    async def send_text(self, webhook_url: str, text: str) -> bool:
        return await self._post(webhook_url, {"msg_type": "text", "content": {"text": text}})

    async def send_report(self, webhook_url: str, message: ReportMessage) -> bool:
        """Send a report as a rich-text post, one paragraph per line."""
        content = [[{"tag": "text", "text": line}] for line in message.lines]
        payload = {
            "msg_type": "post",
            "content": {"post": {"en_us": {"title": message.title, "content": content}}},
        }
        return await self._post(webhook_url, payload)

    async def test_webhook(self, webhook_url: str) -> bool:
        return await self.send_text(
            webhook_url,
            f"Review tracker connection test\nTime: {datetime.now():%Y-%m-%d %H:%M:%S}",
        )

    async def close(self) -> None:
        await self.client.aclose()
