import logging
import threading
from typing import Callable, Dict

logger = logging.getLogger("qrcall")


class RingTimeoutScheduler:
    """One daemon timer per ringing call; fires ``on_timeout(call_id)`` unless cancelled."""

    def __init__(self, on_timeout: Callable[[str], None], timeout_seconds: int):
        self.on_timeout = on_timeout
        self.timeout_seconds = timeout_seconds
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, call_id: str, timeout_seconds: int = None) -> None:
        timeout_seconds = timeout_seconds or self.timeout_seconds
        if timeout_seconds <= 0:
            return

        def _timeout_handler():
            try:
                self.on_timeout(call_id)
            except Exception as e:
                logger.error(f"[CALL/TIMEOUT] Handler failed for {call_id}: {e}")
            finally:
                with self._lock:
                    self._timers.pop(call_id, None)

        with self._lock:
            existing = self._timers.get(call_id)
            if existing:
                existing.cancel()
            timer = threading.Timer(timeout_seconds, _timeout_handler)
            timer.daemon = True
            self._timers[call_id] = timer
            timer.start()

    def cancel(self, call_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(call_id, None)
            if timer:
                timer.cancel()

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)
