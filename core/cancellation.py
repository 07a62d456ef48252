import threading
import time
from typing import Optional

from .errors import RunCancelled


class CancelToken:
    """Cooperative cancellation with an optional monotonic deadline.

    The engine calls ``check()`` between batches and between storage calls.
    A call already blocked on the network is bounded by the storage client's
    own socket timeout, not by this token.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, where: str = "") -> None:
        if self._event.is_set():
            raise RunCancelled(f"Run cancelled{' during ' + where if where else ''}")
        if self.expired:
            raise RunCancelled(f"Run deadline exceeded{' during ' + where if where else ''}")
