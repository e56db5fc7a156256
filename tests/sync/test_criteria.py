"""Tests for the appointment sync criteria."""

from datetime import datetime, timezone

import pytest

from grooming.models.calendar import SyncSettings
from grooming.sync.criteria import should_sync_appointment

NOW = datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)


class TestShouldSyncAppointment:
    def test_confirmed_future_appointment_syncs(self, appointment_factory):
        decision = should_sync_appointment(appointment_factory.make(), SyncSettings(), NOW)
        assert decision.should_sync
        assert decision.reason == "Appointment meets sync criteria"

    @pytest.mark.parametrize("status", ["cancelled", "no_show"])
    def test_never_sync_statuses(self, appointment_factory, status):
        decision = should_sync_appointment(
            appointment_factory.make({"status": status}), SyncSettings(), NOW, force=True
        )
        assert not decision.should_sync
        assert status in decision.reason

    def test_auto_sync_disabled(self, appointment_factory):
        decision = should_sync_appointment(
            appointment_factory.make(), SyncSettings(auto_sync_enabled=False), NOW
        )
        assert not decision.should_sync
        assert decision.reason == "Auto-sync is disabled"

    def test_import_only_does_not_push(self, appointment_factory):
        decision = should_sync_appointment(
            appointment_factory.make(), SyncSettings(sync_direction="import_only"), NOW
        )
        assert not decision.should_sync

    def test_status_not_selected(self, appointment_factory):
        settings = SyncSettings(sync_statuses=["confirmed"])
        decision = should_sync_appointment(
            appointment_factory.make({"status": "checked_in"}), settings, NOW
        )
        assert not decision.should_sync

    def test_past_appointment_skipped_by_default(self, appointment_factory):
        past = appointment_factory.make({"scheduled_at": datetime(2025, 1, 6, 18, 0, tzinfo=timezone.utc)})
        assert not should_sync_appointment(past, SyncSettings(), NOW).should_sync
        assert should_sync_appointment(
            past, SyncSettings(sync_past_appointments=True), NOW
        ).should_sync

    def test_force_bypasses_settings(self, appointment_factory):
        past = appointment_factory.make({"scheduled_at": datetime(2025, 1, 6, 18, 0, tzinfo=timezone.utc)})
        settings = SyncSettings(auto_sync_enabled=False, sync_direction="import_only")

        decision = should_sync_appointment(past, settings, NOW, force=True)

        assert decision.should_sync
        assert decision.reason == "Manual sync requested"


class TestSyncSettings:
    def test_defaults(self):
        settings = SyncSettings()
        assert settings.sync_direction == "push_only"
        assert settings.pushes and not settings.imports
        assert settings.sync_statuses == ["confirmed", "checked_in", "in_progress", "completed"]

    def test_bidirectional(self):
        settings = SyncSettings(sync_direction="bidirectional")
        assert settings.pushes and settings.imports

    def test_cancelled_status_rejected(self):
        with pytest.raises(ValueError, match="can never be synced"):
            SyncSettings(sync_statuses=["confirmed", "cancelled"])

    def test_empty_statuses_rejected(self):
        with pytest.raises(ValueError, match="At least one"):
            SyncSettings(sync_statuses=[])

    def test_duplicate_statuses_collapsed(self):
        settings = SyncSettings(sync_statuses=["confirmed", "completed", "confirmed"])
        assert settings.sync_statuses == ["confirmed", "completed"]
