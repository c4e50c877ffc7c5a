"""Latest-only request guard - no I/O dependencies."""


class RequestGuard:
    """
    Monotonic request counter where only the newest id is current.

    Callers tag each async read with next() and drop the result unless
    is_latest(id) still holds when it arrives. This is how a fast double tap
    avoids applying a stale read after a newer one superseded it.
    """

    def __init__(self) -> None:
        self._current = 0

    @property
    def current(self) -> int:
        return self._current

    def next(self) -> int:
        self._current += 1
        return self._current

    def is_latest(self, request_id: int) -> bool:
        return request_id == self._current
