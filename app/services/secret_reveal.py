"""
Secret vault client.

TOTP secrets are tokenized in an external secret vault; the database keeps
only the returned reference. Revealing a secret requires an access scope.
A refusal surfaces as NotPermitted, distinct from the vault being down
(Unavailable).
"""

import logging
from typing import Optional
import httpx
from app.core.config import settings
from app.core.errors import NotPermitted, Unavailable

logger = logging.getLogger(__name__)


class SecretRevealService:
    """HTTP client for the secret vault."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = (base_url or settings.SECRET_VAULT_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SECRET_VAULT_API_KEY
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=settings.SECRET_VAULT_TIMEOUT_SECONDS,
                headers={"Authorization": f"Bearer {self.api_key}"}
            )
        return self._client

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._http().request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Secret vault unreachable: {e}")
            raise Unavailable("Secret storage is unavailable. Please try again.") from e

        if response.status_code in (401, 403):
            logger.warning(f"Secret vault refused {method} {path}: {response.status_code}")
            raise NotPermitted()
        if response.status_code >= 400:
            logger.error(f"Secret vault error on {method} {path}: {response.status_code}")
            raise Unavailable("Secret storage is unavailable. Please try again.")
        return response

    def store(self, raw_secret: str, access_scope: str) -> str:
        """Tokenize a raw secret. Returns the reference to persist."""
        response = self._request("POST", "/secrets", json={"value": raw_secret, "scope": access_scope})
        return response.json()["id"]

    def reveal(self, secret_ref: str, access_scope: str) -> str:
        """
        Fetch a raw secret.

        Raises:
            NotPermitted: The credentials lack reveal scope
            Unavailable: The vault is unreachable or failed
        """
        response = self._request("POST", f"/secrets/{secret_ref}/reveal", json={"scope": access_scope})
        return response.json()["value"]

    def delete(self, secret_ref: str) -> None:
        self._request("DELETE", f"/secrets/{secret_ref}")


# Singleton instance
secret_reveal_service = SecretRevealService()
