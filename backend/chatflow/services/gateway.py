"""
Messaging gateway - Late inbox API integration
Sends DMs, public comment replies and private replies on behalf of a channel
"""
import logging
from typing import Optional, Any, Dict, List
import httpx

from ..core.config import settings
from ..core.exceptions import GatewayError

logger = logging.getLogger(__name__)


class MessagingGateway:
    """Service for outbound delivery through the Late REST API"""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with the workspace API key"""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers=self._get_headers(),
                    timeout=self.timeout
                )
        except httpx.HTTPError as e:
            logger.error(f"Gateway request to {path} failed: {e}")
            raise GatewayError(f"Gateway unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Gateway error: {response.status_code} - {response.text}")
            raise GatewayError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            return {}

    # ==========================================
    # DIRECT MESSAGES
    # ==========================================

    async def send_message(
        self,
        account_id: str,
        conversation_id: str,
        text: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        reply_markup: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Send a message into an inbox conversation.

        Args:
            account_id: Gateway account of the channel
            conversation_id: Gateway conversation id
            text: Message body
            attachments: Optional [{"type": "image", "url": ...}]
            reply_markup: Optional keyboard markup for keyboard-capable platforms

        Returns:
            The platform message id, when the gateway reports one
        """
        payload: Dict[str, Any] = {"accountId": account_id, "message": text}
        if attachments:
            payload["attachments"] = attachments
        if reply_markup:
            payload["replyMarkup"] = reply_markup

        data = await self._post(f"/inbox/conversations/{conversation_id}/messages", payload)
        message_id = (data.get("data") or {}).get("messageId")

        logger.info(f"Message sent to conversation {conversation_id} (id: {message_id})")
        return message_id

    # ==========================================
    # COMMENTS
    # ==========================================

    async def reply_to_post(
        self,
        post_id: str,
        account_id: str,
        text: str,
        comment_id: str
    ) -> None:
        """Post a public reply under a comment"""
        await self._post(
            f"/inbox/comments/{post_id}",
            {"accountId": account_id, "message": text, "commentId": comment_id}
        )
        logger.info(f"Replied to comment {comment_id} on post {post_id}")

    async def send_private_reply(
        self,
        post_id: str,
        comment_id: str,
        account_id: str,
        text: str
    ) -> None:
        """Open a DM with the author of a comment"""
        await self._post(
            f"/inbox/comments/{post_id}/{comment_id}/private-reply",
            {"accountId": account_id, "message": text}
        )
        logger.info(f"Private reply sent for comment {comment_id} on post {post_id}")


def create_gateway(api_key: str) -> MessagingGateway:
    """
    Factory function to create a gateway client for one workspace.

    Args:
        api_key: The workspace's Late API key

    Returns:
        MessagingGateway instance
    """
    return MessagingGateway(api_key=api_key)
