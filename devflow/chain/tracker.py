"""Fix-task chain tracking for devflow.

Counts how many corrective ("fix") tasks have been spawned for a root task
so the orchestrator can stop automated repair before it oscillates forever
between "fix" and "fails again". Counters live in a shared store with an
expiry that is refreshed on every increment, so abandoned chains clean
themselves up.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from devflow.core.exceptions import ChainTrackerError, DatabaseError
from devflow.core.models import FixTaskRequest, FixTaskResult, LoopCheckResult
from devflow.db.repository import Repository

logger = logging.getLogger("devflow.chain.tracker")

DEFAULT_RETENTION_SECONDS = 7 * 24 * 60 * 60
DEFAULT_KEY_PREFIX = "task:chain:"
DEFAULT_LOOP_THRESHOLD = 2


class ChainStore(Protocol):
    """Atomic-increment key/value store with per-key expiry."""

    def incr_with_expiry(self, key: str, ttl_seconds: float) -> int: ...

    def get(self, key: str) -> Optional[int]: ...


class InMemoryChainStore:
    """Process-local chain store for single-worker deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def incr_with_expiry(self, key: str, ttl_seconds: float) -> int:
        with self._lock:
            now = self._clock()
            current = self._live_value(key, now) or 0
            value = current + 1
            self._values[key] = (value, now + ttl_seconds)
            return value

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            return self._live_value(key, self._clock())

    def _live_value(self, key: str, now: float) -> Optional[int]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= now:
            del self._values[key]
            return None
        return value


class PostgresChainStore:
    """Chain store backed by the fix_task_chains table.

    Increments are a single upsert statement, so concurrent corrective-task
    creations for the same root never lose updates.
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    def incr_with_expiry(self, key: str, ttl_seconds: float) -> int:
        try:
            return self.repository.increment_chain(key, ttl_seconds)
        except DatabaseError as e:
            raise ChainTrackerError(f"Failed to increment chain '{key}': {e}") from e

    def get(self, key: str) -> Optional[int]:
        try:
            return self.repository.get_chain_depth(key)
        except DatabaseError as e:
            raise ChainTrackerError(f"Failed to read chain '{key}': {e}") from e


class ChainTracker:
    """Tracks corrective-task chain depth per root task."""

    def __init__(
        self,
        store: ChainStore,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.store = store
        self.retention_seconds = retention_seconds
        self.key_prefix = key_prefix

    def _key(self, root_task_id: str) -> str:
        return f"{self.key_prefix}{root_task_id}"

    def increment_and_get(self, root_task_id: str) -> int:
        """Atomically bump the chain for a root task and return the new depth."""
        depth = self.store.incr_with_expiry(self._key(root_task_id), self.retention_seconds)
        logger.debug("Chain %s -> depth %d", root_task_id, depth)
        return depth

    def current_depth(self, root_task_id: str) -> int:
        """Current depth for a root task; 0 when unknown or expired."""
        return self.store.get(self._key(root_task_id)) or 0

    def create_fix_task(self, request: FixTaskRequest) -> FixTaskResult:
        """Register a corrective task for a failed root task.

        Args:
            request: Failure details for the root task.

        Returns:
            FixTaskResult with the derived fix task ID and its chain depth.
        """
        depth = self.increment_and_get(request.original_task_id)
        fix_task_id = f"fix-{request.original_task_id}-{depth}"
        logger.info(
            "Created fix task %s for %s (chain depth %d)",
            fix_task_id, request.original_task_id, depth,
        )
        return FixTaskResult(fix_task_id=fix_task_id, chain_depth=depth)

    def check_loop(self, root_task_id: str, threshold: int = DEFAULT_LOOP_THRESHOLD) -> LoopCheckResult:
        """Report whether a root task has already spawned too many fix tasks."""
        depth = self.current_depth(root_task_id)
        is_loop = depth >= threshold
        if is_loop:
            logger.warning("Fix-task loop detected for %s (chain depth %d)", root_task_id, depth)
        return LoopCheckResult(is_loop=is_loop, chain_depth=depth)
