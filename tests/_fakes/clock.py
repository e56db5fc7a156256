from datetime import datetime, timedelta, timezone


class FakeClock:
    """A settable clock; call it like ``utc_now``."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now
