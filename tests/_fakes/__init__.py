from .calendar import FakeCalendar
from .clock import FakeClock
from .repositories import (
    FakeBookings,
    FakeConnectionsRepo,
    FakeJobRepo,
    FakeMappingsRepo,
    FakeQuotaLedger,
    FakeSettingsRepo,
    FakeSyncLogRepo,
)
from .world import RecordingNotifier, SyncWorld, build_world

__all__ = [
    "FakeCalendar",
    "FakeClock",
    "FakeBookings",
    "FakeConnectionsRepo",
    "FakeJobRepo",
    "FakeMappingsRepo",
    "FakeQuotaLedger",
    "FakeSettingsRepo",
    "FakeSyncLogRepo",
    "RecordingNotifier",
    "SyncWorld",
    "build_world",
]
