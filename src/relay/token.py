"""Ephemeral credential issuance for the realtime model.

Browsers never see the server's API key: they fetch a short-lived client
secret from ``/api/token`` and use it to negotiate their own peer
connection with the model endpoint. The relay core never calls this.
"""

import logging
from typing import Any

import aiohttp
from aiohttp import web

from relay.config import TokenConfig

logger = logging.getLogger(__name__)


class TokenIssuerNotConfigured(Exception):
    """No upstream API key configured."""


class TokenIssueError(Exception):
    """Upstream credential request failed."""


class EphemeralTokenIssuer:
    """Requests ephemeral realtime sessions from the upstream API."""

    def __init__(self, config: TokenConfig, session: aiohttp.ClientSession | None = None) -> None:
        """Initialize issuer.

        Args:
            config: Token configuration (API key, endpoint, model, voice)
            session: Optional shared HTTP client session
        """
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
            )
            self._owns_session = True
        return self._session

    async def issue(self) -> dict[str, Any]:
        """Create one ephemeral realtime session.

        Returns:
            Upstream JSON response (includes ``client_secret``)

        Raises:
            TokenIssuerNotConfigured: If no API key is configured
            TokenIssueError: If the upstream call fails
        """
        if not self.is_configured:
            raise TokenIssuerNotConfigured("API key not configured")

        session = await self._get_session()
        try:
            async with session.post(
                self.config.base_url,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self.config.model, "voice": self.config.voice},
            ) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise TokenIssueError(f"Upstream returned {response.status}: {detail[:200]}")
                data: dict[str, Any] = await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise TokenIssueError(f"Upstream request failed: {e}") from e

        logger.info("Ephemeral token issued", extra={"model": self.config.model})
        return data

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


ISSUER_KEY = web.AppKey("token_issuer", EphemeralTokenIssuer)


async def issue_token(request: web.Request) -> web.Response:
    """Return an ephemeral credential or a JSON error.

    Returns:
        200 OK: Upstream session JSON
        500 Internal Server Error: {"error": str}
    """
    issuer = request.app[ISSUER_KEY]
    try:
        data = await issuer.issue()
    except TokenIssuerNotConfigured:
        return web.json_response({"error": "API key not configured"}, status=500)
    except TokenIssueError as e:
        logger.error("Token generation error", extra={"error": str(e)})
        return web.json_response({"error": "Failed to generate token"}, status=500)

    return web.json_response(data)


def setup_token_routes(app: web.Application, issuer: EphemeralTokenIssuer) -> None:
    """Set up the token route on application."""
    app[ISSUER_KEY] = issuer
    app.router.add_get("/api/token", issue_token)

    logger.info("Token endpoint configured: /api/token")
