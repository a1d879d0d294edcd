"""
PracticePanther access tokens via Nango
Nango owns the OAuth grant and its refresh; we only ask for the current token.
"""
import logging
from typing import Optional, Protocol

import httpx

from mattersync.services.sync.errors import CredentialError

logger = logging.getLogger(__name__)


class AccessTokenProvider(Protocol):
    """Anything that can hand out a currently valid bearer token."""

    async def get_valid_access_token(self) -> str:
        ...


# ============================================================================
# NANGO TOKEN RETRIEVAL
# ============================================================================

class NangoTokenProvider:
    """Reads the PracticePanther access token from a Nango connection."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        secret: Optional[str],
        connection_id: Optional[str],
        provider_key: str = "practicepanther",
        base_url: str = "https://api.nango.dev"
    ):
        self.http_client = http_client
        self.secret = secret
        self.connection_id = connection_id
        self.provider_key = provider_key
        self.base_url = base_url.rstrip("/")

    async def get_valid_access_token(self) -> str:
        """
        Get PracticePanther access token via Nango.

        Returns:
            Access token string

        Raises:
            CredentialError: If Nango is not configured or token retrieval fails
        """
        if not self.secret or not self.connection_id:
            raise CredentialError("Nango secret or PracticePanther connection ID not configured")

        url = f"{self.base_url}/connections/{self.connection_id}"
        params = {"provider_config_key": self.provider_key}
        headers = {"Authorization": f"Bearer {self.secret}"}

        try:
            response = await self.http_client.get(url, headers=headers, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to get Nango token: {e.response.status_code} - {e.response.text[:200]}")
            raise CredentialError(f"Nango returned {e.response.status_code} for connection {self.connection_id}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error reaching Nango: {e}")
            raise CredentialError(f"Could not reach Nango: {e}") from e
        except ValueError as e:
            logger.error(f"Invalid JSON from Nango: {e}")
            raise CredentialError("Invalid JSON from Nango") from e

        token = (data.get("credentials") or {}).get("access_token") if isinstance(data, dict) else None
        if not token:
            raise CredentialError(f"Nango connection {self.connection_id} has no access token")

        return token
