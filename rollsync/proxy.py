# rollsync/proxy.py

"""
HTTP calls to the credential proxy that fronts the remote platform.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from rollsync.errors import CredentialExpiredError, TransportError

logger = logging.getLogger(__name__)

AUTH_FAILURE_CODES = (401, 403)


class ProxyClient:
    """
    Exchanges the session cookie for a short-lived socket token and fetches
    character sheets. Pass ``client`` to share one ``httpx.AsyncClient``
    (tests hand in one built on ``httpx.MockTransport``).
    """

    def __init__(self, proxy_url: str, cobalt_cookie: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.proxy_url = proxy_url.rstrip("/")
        self.cobalt_cookie = cobalt_cookie
        self.client = client
        self.timeout = timeout

    async def _post(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        url = f"{self.proxy_url}{path}"
        try:
            if self.client is not None:
                return await self.client.post(url, json=body, timeout=self.timeout)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise TransportError(f"Proxy request to {path} failed: {e}") from e

    async def fetch_token(self) -> str:
        logger.info("Fetching access token via proxy")
        response = await self._post("/proxy/auth", {"cobalt": self.cobalt_cookie})

        if response.status_code in AUTH_FAILURE_CODES:
            logger.error(f"Session cookie expired or invalid (HTTP {response.status_code})")
            raise CredentialExpiredError(response.status_code)
        if response.status_code >= 400:
            raise TransportError(f"Failed to fetch access token: HTTP {response.status_code}")

        token = _json_object(response, "auth").get("token")
        if not token:
            raise TransportError("No token in auth response")

        logger.info("Access token obtained")
        return token

    async def fetch_character(self, character_id: str, campaign_id: str) -> Dict[str, Any]:
        response = await self._post("/proxy/character", {
            "cobalt": self.cobalt_cookie,
            "characterId": character_id,
            "campaignId": campaign_id,
            "devMode": False,
            "filterModifiers": False,
            "splitSpells": True,
        })

        if response.status_code in AUTH_FAILURE_CODES:
            raise CredentialExpiredError(response.status_code)
        if response.status_code >= 400:
            raise TransportError(f"Failed to fetch character {character_id}: HTTP {response.status_code}")

        logger.info(f"Character data fetched for {character_id}")
        return _json_object(response, "character")


def _json_object(response: httpx.Response, what: str) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"Proxy returned an unreadable {what} response") from e
    if not isinstance(body, dict):
        raise TransportError(f"Proxy returned a non-object {what} response")
    return body
