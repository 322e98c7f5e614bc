from time import time

from app.utils.locks import KeyedLocks


class RateLimiter:
    """Per-client sliding window rate limiter."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = {}
        self._locks = KeyedLocks("rate-limit")
        self._last_sweep = time()

    async def check_rate_limit(self, client_key: str) -> tuple[bool, int | None]:
        """
        Record a request from ``client_key`` if it is under the limit.

        Returns:
            (is_allowed, retry_after_seconds)
        """
        async with self._locks.hold(client_key):
            current_time = time()
            cutoff = current_time - self.window_seconds
            self._sweep_idle_clients(current_time, cutoff)

            # Drop timestamps outside the window
            timestamps = [t for t in self._requests.get(client_key, []) if t > cutoff]

            if len(timestamps) < self.max_requests:
                timestamps.append(current_time)
                self._requests[client_key] = timestamps
                return True, None

            self._requests[client_key] = timestamps
            retry_after = int(self.window_seconds - (current_time - timestamps[0])) + 1
            return False, retry_after

    def _sweep_idle_clients(self, current_time: float, cutoff: float) -> None:
        # At most once per window: forget clients with no request inside it
        if current_time - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = current_time
        idle = [key for key, stamps in self._requests.items() if not stamps or stamps[-1] <= cutoff]
        for key in idle:
            del self._requests[key]

    def tracked_clients(self) -> int:
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()
        self._locks.clear()
        self._last_sweep = time()
