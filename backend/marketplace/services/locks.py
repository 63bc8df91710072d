"""
Per-auction mutual exclusion

Every state-changing operation on a post (bids, sales, buy-now, expiry,
cancel/reactivate, chat posts) runs while holding that post's lock, so the
"check current state then write" sequence never interleaves across callers in
this process. Inside the lock the post row is also re-read with
``SELECT ... FOR UPDATE`` so a database that supports row locks serialises
across connections as well.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading


class AuctionLockRegistry:
    """
    Hands out one ``threading.Lock`` per post id.

    Entries are reference counted and dropped once no thread holds or waits
    on them, so the registry only ever contains posts that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # Format: {post_id: [lock, holders]}
        self._locks: Dict[int, List] = {}

    @contextmanager
    def hold(self, post_id: int) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(post_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[post_id] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[post_id]

    def active_count(self) -> int:
        """Number of posts currently locked or awaited"""
        with self._guard:
            return len(self._locks)


auction_locks = AuctionLockRegistry()
