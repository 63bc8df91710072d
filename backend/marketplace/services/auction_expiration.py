"""
Background sweeper that closes auctions past their end time
"""

from datetime import datetime
from typing import List, Optional
import asyncio

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..core.logging import get_logger
from ..enums.auction import PostStatus
from ..errors import StateConflict
from ..models.post import Post
from ..utils.clock import utcnow
from .auction_lifecycle import AuctionLifecycle, auction_lifecycle

logger = get_logger(__name__)


class AuctionExpirationService:
    """
    Periodically sells or expires live auctions whose end time has passed.

    One tick runs right away on ``start()`` and then every ``check_interval``
    seconds. Each auction is closed in its own session through
    ``AuctionLifecycle.end_auction``, so a failure on one is logged and the
    rest of the tick carries on; the failed auction is still live and gets
    picked up again on the next tick.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lifecycle: AuctionLifecycle = auction_lifecycle,
        check_interval: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._lifecycle = lifecycle
        self._interval = check_interval or settings.auction_check_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.last_run_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        logger.info(
            f"Starting auction expiration service (interval {self._interval}s)",
            extra={"event": "sweeper_started"},
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Auction expiration service stopped", extra={"event": "sweeper_stopped"})

    async def _run(self) -> None:
        while True:
            try:
                await run_in_threadpool(self.check_expired_auctions)
                self.last_run_at = utcnow()
            except Exception as e:
                # Only the snapshot query can get here; per-auction errors are handled below
                logger.error(f"Auction expiration tick failed: {e}", exc_info=True, extra={"event": "sweeper_tick_failed"})
            await asyncio.sleep(self._interval)

    def expired_auction_ids(self, now: Optional[datetime] = None) -> List[int]:
        now = now or utcnow()
        with self._session_factory() as db:
            rows = (
                db.query(Post.id)
                .filter(Post.status == PostStatus.LIVE, Post.auction_end_time <= now)
                .order_by(Post.auction_end_time.asc())
                .all()
            )
        return [row.id for row in rows]

    def check_expired_auctions(self, now: Optional[datetime] = None) -> int:
        """Close every auction in this tick's snapshot; returns how many were closed"""
        now = now or utcnow()
        post_ids = self.expired_auction_ids(now)
        if not post_ids:
            return 0

        logger.info(f"Found {len(post_ids)} expired auction(s)", extra={"event": "sweeper_tick"})
        closed = 0
        for post_id in post_ids:
            with self._session_factory() as db:
                try:
                    self._lifecycle.end_auction(db, post_id, now=now)
                    closed += 1
                except StateConflict as e:
                    # Closed by a request between the snapshot and now
                    logger.debug(f"Skipping auction {post_id}: {e.detail}")
                except Exception as e:
                    logger.error(
                        f"Error processing expired auction {post_id}: {e}",
                        exc_info=True,
                        extra={"event": "sweeper_auction_failed", "post_id": post_id},
                    )
        return closed
