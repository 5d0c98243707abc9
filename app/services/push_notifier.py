"""
Push notifications to an account's other signed-in devices.

Sends Expo-format push messages over HTTP. Used to tell trusted devices
that a push login request is waiting for approval.
"""

import logging
import uuid
from typing import List, Optional
import httpx
from app.core.config import settings

logger = logging.getLogger(__name__)

# Keep a little headroom under the gateway's 100-message limit
CHUNK_SIZE = 90


def _valid_token(token: str) -> bool:
    return isinstance(token, str) and token.startswith("ExponentPushToken[")


class PushNotifier:
    """Expo push gateway client."""

    def __init__(self, gateway_url: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.gateway_url = gateway_url or settings.PUSH_GATEWAY_URL
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.PUSH_GATEWAY_TIMEOUT_SECONDS)
        return self._client

    def notify_login_request(self, tokens: List[str], request_id: uuid.UUID, email: str) -> bool:
        """
        Notify devices that a login request needs approval.

        Returns:
            bool: True if every batch was accepted (or there was nothing to send),
                False if the gateway could not be reached or rejected a batch
        """
        tokens = [t for t in tokens if _valid_token(t)]
        if not tokens:
            logger.info(f"No push devices registered for {email}; request {request_id} is visible via the pending list only")
            return True
        if settings.DISABLE_PUSH:
            logger.info("Push disabled by settings; skipping send")
            return True

        messages = [
            {
                "to": token,
                "title": "Sign-in request",
                "body": "Someone is trying to sign in to your LifeVault account. Tap to approve or deny.",
                "data": {"type": "push_login", "request_id": str(request_id)},
                "priority": "high",
                "ttl": settings.PUSH_LOGIN_TIMEOUT_SECONDS,
            }
            for token in tokens
        ]

        for start in range(0, len(messages), CHUNK_SIZE):
            batch = messages[start:start + CHUNK_SIZE]
            try:
                response = self._http().post(self.gateway_url, json=batch)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Push gateway error for request {request_id}: {e}")
                return False

        logger.info(f"Push login request {request_id} sent to {len(tokens)} device(s)")
        return True


# Singleton instance
push_notifier = PushNotifier()
