"""
Async WordPress REST API client.

Uses ``httpx`` with HTTP Basic auth (an application password) against the
``wp-json/wp/v2/posts`` endpoints of one site.  The publication executor
creates one client per publish attempt from the site's stored credentials.

Fail-fast philosophy: non-2xx responses raise ``ExternalPublishError``
carrying the remote message; only the idempotent ``get_post`` is retried.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from autopost.exceptions import ContentEndpointAuthError, ExternalPublishError
from autopost.utils import with_retry

logger = logging.getLogger(__name__)


_STATUS_MESSAGES: Dict[int, str] = {
    401: "Invalid username or password",
    403: "Access denied - insufficient permissions",
    404: "WordPress REST API resource not found",
    500: "WordPress server error",
}


class WordPressClient:
    """Async client for one WordPress site.

    Args:
        base_url: Site root, e.g. ``https://blog.example.com``.
        username: WordPress user.
        password: Application password for *username*.
        timeout: Per-request timeout in seconds.
        transport: Optional ``httpx`` transport (tests use
            ``httpx.MockTransport``).

    Usage::

        client = WordPressClient.from_credentials(creds)
        post = await client.create_post(WordPressClient.build_payload(item))
    """

    API_PATH: str = "wp-json/wp/v2"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_credentials(
        cls,
        credentials: "SiteCredentials",  # noqa: F821
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "WordPressClient":
        return cls(
            credentials.url,
            credentials.username,
            credentials.password,
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def create_post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a post.

        Returns:
            The created post as returned by WordPress (includes ``id``).

        Raises:
            ExternalPublishError: On a non-2xx response.
        """
        response = await self._request("POST", "posts", payload)
        return response.json()

    async def update_post(self, post_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Update an existing post.  WordPress accepts POST for updates."""
        response = await self._request("POST", f"posts/{post_id}", payload)
        return response.json()

    async def delete_post(self, post_id: int, force: bool = True) -> bool:
        """Delete a post, best-effort.

        Returns:
            ``True`` if WordPress confirmed the deletion, ``False`` on any
            remote or transport failure (which is logged).
        """
        endpoint = f"posts/{post_id}?force=true" if force else f"posts/{post_id}"
        try:
            await self._request("DELETE", endpoint)
        except (ExternalPublishError, httpx.HTTPError) as exc:
            logger.error(
                "[WORDPRESS] Failed to delete post %s on %s: %s",
                post_id,
                self.base_url,
                exc,
            )
            return False
        return True

    @with_retry(attempts=3, retry_on=(httpx.TransportError,))
    async def get_post(self, post_id: int) -> Optional[Dict[str, Any]]:
        """Fetch a post by ID.

        Returns:
            The post dict, or ``None`` if WordPress answers 404.
        """
        try:
            response = await self._request("GET", f"posts/{post_id}")
        except ExternalPublishError as exc:
            if exc.status_code == 404:
                return None
            raise
        return response.json()

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    @staticmethod
    def build_payload(item: "Item", category_id: Optional[int] = None) -> Dict[str, Any]:  # noqa: F821
        """Build the ``posts`` request body for *item*.

        Tags stay local metadata; only the category is sent.
        """
        payload: Dict[str, Any] = {
            "title": {"raw": item.title},
            "content": {"raw": item.content or ""},
            "status": "publish",
        }
        if category_id is not None:
            payload["categories"] = [category_id]
        if item.summary:
            payload["excerpt"] = {"raw": item.summary}
        return payload

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}/{self.API_PATH}/{endpoint}"
        async with httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.username, self.password),
            transport=self._transport,
        ) as client:
            response = await client.request(method, url, json=payload)

        if response.is_success:
            logger.debug("[WORDPRESS] %s %s -> %d", method, url, response.status_code)
            return response

        message = self._error_message(response)
        logger.error(
            "[WORDPRESS] %s %s failed: HTTP %d: %s",
            method,
            url,
            response.status_code,
            message,
        )
        if response.status_code in (401, 403):
            raise ContentEndpointAuthError(message, response.status_code)
        raise ExternalPublishError(message, response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Prefer the ``message`` WordPress puts in its JSON error body."""
        remote = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            remote = body.get("message")
        fallback = _STATUS_MESSAGES.get(
            response.status_code,
            f"HTTP {response.status_code}: {response.reason_phrase}",
        )
        return f"{fallback}: {remote}" if remote else fallback


__all__ = [
    "WordPressClient",
]
