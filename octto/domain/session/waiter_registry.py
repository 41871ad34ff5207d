from typing import Callable, Dict, Generic, Hashable, List, TypeVar
import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Waiter(Generic[V]):
    """One registration; identity distinguishes repeated callbacks"""

    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[V], None]):
        self.callback = callback


class WaiterRegistry(Generic[K, V]):
    """
    Keyed registry of one-shot continuations.

    Waiters for a key are kept in registration order. ``notify_first`` hands
    a value to the oldest waiter only, so N waiters on one key receive N
    distinct values in FIFO order; ``notify_all`` hands the same value to
    every current waiter. Each waiter is invoked at most once and removed
    before its callback runs.

    Not thread-safe: register and notify are expected to run on a single
    event loop.
    """

    def __init__(self):
        self._waiters: Dict[K, List[_Waiter[V]]] = {}

    def register(self, key: K, callback: Callable[[V], None]) -> Callable[[], None]:
        """Register a callback for ``key`` and return its idempotent cancel function"""

        waiter = _Waiter(callback)
        self._waiters.setdefault(key, []).append(waiter)

        def cancel() -> None:
            self._remove(key, waiter)

        return cancel

    def notify_first(self, key: K, value: V) -> bool:
        """Invoke and remove the oldest waiter for ``key``; False if none was waiting"""

        waiters = self._waiters.get(key)
        if not waiters:
            return False

        waiter = waiters.pop(0)
        if not waiters:
            del self._waiters[key]

        waiter.callback(value)
        return True

    def notify_all(self, key: K, value: V) -> int:
        """Invoke and remove every waiter for ``key``; returns how many were notified"""

        waiters = self._waiters.pop(key, [])
        for waiter in waiters:
            waiter.callback(value)
        return len(waiters)

    def has(self, key: K) -> bool:
        return bool(self._waiters.get(key))

    def count(self, key: K) -> int:
        return len(self._waiters.get(key, []))

    def clear(self, key: K) -> None:
        """Drop all waiters for ``key`` without invoking them"""

        dropped = self._waiters.pop(key, [])
        if dropped:
            logger.debug("Cleared waiters", key=key, count=len(dropped))

    def _remove(self, key: K, waiter: _Waiter[V]) -> None:
        waiters = self._waiters.get(key)
        if not waiters:
            return

        for index, candidate in enumerate(waiters):
            if candidate is waiter:
                del waiters[index]
                break

        if not waiters:
            del self._waiters[key]
