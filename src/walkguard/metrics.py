import threading


class Counter:
    """
    Named, monotonically increasing counters.

    Safe to increment from concurrent walker threads. One instance is passed
    explicitly into each component so that separate runs (and tests) never
    share state.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._counts: dict[str, int] = {}

    def add(self, name: str, n: int = 1) -> None:
        if n < 0:
            raise ValueError("counters can only increase")

        with self._lock:
            self._counts[name] = self._counts.get(name, 0) + n

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def metrics(self) -> list[str]:
        """Return all counter names in sorted order."""
        with self._lock:
            return sorted(self._counts)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(sorted(self._counts.items()))

    def merge(self, other: "Counter") -> None:
        for name, value in other.snapshot().items():
            self.add(name, value)
