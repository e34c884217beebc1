"""
Publication executor: one publish attempt and its resulting transition.

``PublicationExecutor`` does not decide *when* an item should run (that
is the sweep's job).  Given an item, it claims it (``processing``), sends
it to the site's WordPress endpoint, and records the outcome:

    - success: ``published`` with the remote post ID and ``published_at``
    - any exception: ``failed`` with the exception message verbatim

Remote failures are converted into item state here and never propagate
as a crash.  The remote call is bounded by ``publish_timeout_seconds``.

``sync`` pushes later edits of a ``published`` item to its existing remote
post.  It leaves the item's status alone and lets remote errors propagate.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from autopost.config import Settings, get_settings
from autopost.exceptions import (
    ExternalPublishError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from autopost.scheduling.item_store import ItemStore
from autopost.scheduling.limit_guard import LimitGuard
from autopost.scheduling.models import (
    ConnectionStatus,
    Item,
    ItemStatus,
    PublishResult,
    Site,
    SiteCredentials,
)
from autopost.tools.wordpress_client import WordPressClient
from autopost.utils import utc_now

logger = logging.getLogger(__name__)

ClientFactory = Callable[[SiteCredentials, float], WordPressClient]


def _default_client_factory(credentials: SiteCredentials, timeout: float) -> WordPressClient:
    return WordPressClient.from_credentials(credentials, timeout=timeout)


def describe_error(exc: BaseException) -> str:
    """The exception message, or its type name when the message is empty."""
    if isinstance(exc, asyncio.TimeoutError):
        return "Publish timed out"
    return str(exc) or type(exc).__name__


class PublicationExecutor:
    """Publishes single items to their site's content endpoint.

    Args:
        db: Database client (:class:`~autopost.database.SupabaseDB`).
        items: Item store used for every status transition.
        limit_guard: Monthly cap check for manual publishes.
        settings: Application settings; defaults to :func:`get_settings`.
        client_factory: Builds a :class:`WordPressClient` from credentials
            and a timeout.  Tests inject fakes here.
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        items: ItemStore,
        limit_guard: LimitGuard,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.db = db
        self.items = items
        self.limit_guard = limit_guard
        self.settings = settings or get_settings()
        self.client_factory = client_factory or _default_client_factory

    # ================================================================
    # MANUAL PUBLISH
    # ================================================================

    async def publish(self, site_id: str, item_id: str) -> PublishResult:
        """Publish a draft immediately (``draft -> processing -> ...``).

        Raises:
            NotFoundError: Unknown item for this site.
            ValidationError: Empty content; the item is left untouched.
            InvalidTransitionError: The item is not a draft.
            MonthlyLimitExceededError: The site's monthly cap is reached.
        """
        item = await self.items.get(item_id, site_id)
        if not item.has_content:
            raise ValidationError("Item content cannot be empty")
        if item.status is not ItemStatus.DRAFT:
            # Scheduled items are published by the sweep, not by hand.
            raise InvalidTransitionError(
                item.status.value,
                ItemStatus.PROCESSING.value,
                f"Only draft items can be published immediately (item is '{item.status.value}')",
            )
        await self.limit_guard.ensure_can_post(site_id)

        claimed = await self.items.claim(item)
        if claimed is None:
            latest = await self.items.get(item_id, site_id)
            return PublishResult(
                success=False,
                item=latest,
                error=f"Item is already {latest.status.value}",
            )
        return await self.execute_claimed(claimed)

    # ================================================================
    # EXECUTION OF A CLAIMED ITEM
    # ================================================================

    async def execute_claimed(self, item: Item) -> PublishResult:
        """Send a ``processing`` item to its endpoint and record the outcome.

        Never raises for remote failures; they end as ``failed`` items.
        """
        if not item.has_content:
            failed = await self.items.mark_failed(item, "Item content is empty")
            logger.warning("[EXECUTOR] Item %s has no content, marked failed", item.id)
            return PublishResult(success=False, item=failed, error=failed.error_message)

        logger.info(
            "[EXECUTOR] Publishing item %s (site=%s, content_len=%d)",
            item.id,
            item.site_id,
            len(item.content or ""),
        )
        try:
            external_id = await asyncio.wait_for(
                self._send(item),
                timeout=self.settings.publish_timeout_seconds,
            )
        except Exception as exc:
            error = describe_error(exc)
            logger.error("[EXECUTOR] Failed to publish item %s: %s", item.id, error)
            failed = await self.items.mark_failed(item, error)
            return PublishResult(success=False, item=failed, error=error)

        published = await self.items.mark_published(item, external_id, utc_now())
        logger.info(
            "[EXECUTOR] Successfully published item %s (external_id=%s)",
            item.id,
            external_id,
        )
        return PublishResult(success=True, item=published)

    # ================================================================
    # SYNC OF PUBLISHED ITEMS
    # ================================================================

    async def sync(self, site_id: str, item_id: str) -> PublishResult:
        """Push local edits of a ``published`` item to its remote post.

        The item keeps its status; nothing is written locally.

        Raises:
            NotFoundError: Unknown item for this site.
            ValidationError: The item is not published, or has no content.
            ExternalPublishError: The remote post is gone (``status_code``
                404), the endpoint rejected the update, or it timed out.
            RetryExhaustedError: The endpoint could not be reached.
        """
        item = await self.items.get(item_id, site_id)
        if item.status is not ItemStatus.PUBLISHED or item.external_id is None:
            raise ValidationError(
                f"Only published items can be synced (item is '{item.status.value}')"
            )
        if not item.has_content:
            raise ValidationError("Item content cannot be empty")

        try:
            await asyncio.wait_for(
                self._push_update(item),
                timeout=self.settings.publish_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ExternalPublishError("Publish timed out") from exc

        logger.info(
            "[EXECUTOR] Synced item %s to remote post %s", item.id, item.external_id
        )
        return PublishResult(success=True, item=item)

    # ================================================================
    # DELETE
    # ================================================================

    async def delete_item(self, site_id: str, item_id: str) -> None:
        """Delete an item, removing its remote post first when published.

        Remote deletion is best-effort: a failure is logged and the local
        row is deleted anyway.

        Raises:
            NotFoundError: Unknown item for this site.
        """
        item = await self.items.get(item_id, site_id)
        if item.status is ItemStatus.PUBLISHED and item.external_id is not None:
            try:
                client = await self._client_for(site_id)
                if not await client.delete_post(item.external_id):
                    logger.warning(
                        "[EXECUTOR] Remote post %s of item %s was not deleted",
                        item.external_id,
                        item_id,
                    )
            except Exception as exc:
                logger.warning(
                    "[EXECUTOR] Remote delete of item %s failed: %s",
                    item_id,
                    describe_error(exc),
                )
        await self.items.delete(item_id, site_id)

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    async def _send(self, item: Item) -> int:
        site = await self._load_site(item.site_id)
        client = await self._client_for(item.site_id)
        post = await client.create_post(WordPressClient.build_payload(item, site.category_id))

        post_id = post.get("id") if isinstance(post, dict) else None
        if post_id is None:
            raise ExternalPublishError("Content endpoint response has no post id")
        return int(post_id)

    async def _push_update(self, item: Item) -> None:
        site = await self._load_site(item.site_id)
        client = await self._client_for(item.site_id)
        if await client.get_post(item.external_id) is None:
            raise ExternalPublishError(
                f"Remote post {item.external_id} no longer exists", 404
            )
        await client.update_post(
            item.external_id, WordPressClient.build_payload(item, site.category_id)
        )

    async def _load_site(self, site_id: str) -> Site:
        row = await self.db.get_site(site_id)
        if row is None:
            raise NotFoundError("Site", site_id)
        return self._row_to_site(row)

    async def _client_for(self, site_id: str) -> WordPressClient:
        row = await self.db.get_site_credentials(site_id)
        if not row:
            raise ExternalPublishError(f"No credentials stored for site {site_id}")
        credentials = SiteCredentials(
            url=row["url"], username=row["username"], password=row["password"]
        )
        return self.client_factory(credentials, float(self.settings.publish_timeout_seconds))

    @staticmethod
    def _row_to_site(row: Dict[str, Any]) -> Site:
        """Convert a ``sites`` row to a ``Site`` dataclass."""
        category_id = row.get("category_id")
        return Site(
            id=row["id"],
            name=row.get("name") or "",
            url=row.get("url") or "",
            is_active=bool(row.get("is_active", True)),
            connection_status=ConnectionStatus(
                row.get("connection_status") or ConnectionStatus.UNKNOWN.value
            ),
            category_id=int(category_id) if category_id is not None else None,
        )


__all__ = [
    "PublicationExecutor",
    "describe_error",
]
