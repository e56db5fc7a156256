"""Tests for translating appointments to calendar events and back."""

from datetime import datetime, timezone

import pytest

from grooming.models.appointment import Addon
from grooming.sync.config import SyncConfig
from grooming.sync.errors import TerminalValidation
from grooming.sync.mapper import EventMapper, format_phone_number


@pytest.fixture
def mapper():
    return EventMapper.from_config(SyncConfig())


class TestFormatPhoneNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("5625551234", "(562) 555-1234"),
            ("562-555-1234", "(562) 555-1234"),
            ("+1 562 555 1234", "+1 562 555 1234"),
            ("555-1234", "555-1234"),
            (None, ""),
            ("", ""),
        ],
    )
    def test_format(self, raw, expected):
        assert format_phone_number(raw) == expected


class TestToExternalEvent:
    def test_title_and_times(self, mapper, appointment_factory):
        payload = mapper.to_external_event(appointment_factory.make())

        assert payload.summary == "Full Groom - Max (Jane Doe)"
        assert payload.start.date_time == "2025-01-08T10:00:00-08:00"
        assert payload.end.date_time == "2025-01-08T11:45:00-08:00"
        assert payload.start.time_zone == "America/Los_Angeles"
        assert payload.location == "The Puppy Day, La Mirada, CA"
        assert payload.status == "confirmed"

    def test_title_without_pet(self, mapper, appointment_factory):
        payload = mapper.to_external_event(appointment_factory.make({"pet": None}))
        assert payload.summary == "Full Groom (Jane Doe)"

    def test_title_without_service(self, mapper, appointment_factory):
        appointment = appointment_factory.make({"service": None, "duration_minutes": 45, "addons": []})

        payload = mapper.to_external_event(appointment)

        assert payload.summary == "Grooming Appointment - Max (Jane Doe)"
        assert payload.end.date_time == "2025-01-08T10:45:00-08:00"

    def test_default_duration_when_unknown(self, mapper, appointment_factory):
        appointment = appointment_factory.make({"service": None, "addons": []})
        payload = mapper.to_external_event(appointment)
        assert payload.end.date_time == "2025-01-08T11:00:00-08:00"

    def test_description_lists_details(self, mapper, appointment_factory):
        description = mapper.to_external_event(appointment_factory.make()).description

        assert "**Customer:** Jane Doe" in description
        assert "**Email:** jane@example.com" in description
        assert "**Phone:** (562) 555-1234" in description
        assert "**Pet:** Max" in description
        assert "**Size:** medium" in description
        assert "**Service:** Full Groom" in description
        assert "**Duration:** 105 minutes" in description
        assert "- Nail Trim (15 min)" in description
        assert "Sensitive ears" in description
        assert description.endswith("*Synced from The Puppy Day appointment system*")

    def test_pending_maps_to_tentative(self, mapper, appointment_factory):
        payload = mapper.to_external_event(appointment_factory.make({"status": "pending"}))
        assert payload.status == "tentative"

    def test_customer_is_attendee(self, mapper, appointment_factory):
        body = mapper.to_external_event(appointment_factory.make()).to_api()
        assert body["attendees"] == [{"email": "jane@example.com", "displayName": "Jane Doe"}]

    def test_no_attendee_without_email(self, mapper, appointment_factory):
        appointment = appointment_factory.make()
        appointment.customer.email = None
        body = mapper.to_external_event(appointment).to_api()
        assert "attendees" not in body

    def test_private_properties_link_back_to_appointment(self, mapper, appointment_factory):
        body = mapper.to_external_event(appointment_factory.make()).to_api()
        assert body["extendedProperties"]["private"] == {
            "appointment_id": "appt-1",
            "source": "grooming-booking",
        }

    def test_identical_input_gives_identical_payload(self, mapper, appointment_factory):
        """Test retries of the same job send byte-identical bodies."""
        first = mapper.to_external_event(appointment_factory.make()).canonical_json()
        second = mapper.to_external_event(appointment_factory.make()).canonical_json()
        assert first == second

    def test_summer_time_offset(self, mapper, appointment_factory):
        appointment = appointment_factory.make(
            {"scheduled_at": datetime(2025, 7, 8, 17, 0, tzinfo=timezone.utc)}
        )
        payload = mapper.to_external_event(appointment)
        assert payload.start.date_time == "2025-07-08T10:00:00-07:00"

    def test_naive_start_is_treated_as_utc(self, mapper, appointment_factory):
        appointment = appointment_factory.make({"scheduled_at": datetime(2025, 1, 8, 18, 0)})
        payload = mapper.to_external_event(appointment)
        assert payload.start.date_time == "2025-01-08T10:00:00-08:00"


class TestValidatePayload:
    def test_valid_payload_passes(self, mapper, appointment_factory):
        mapper.validate_payload(mapper.to_external_event(appointment_factory.make()))

    def test_bad_attendee_email_rejected(self, mapper, appointment_factory):
        appointment = appointment_factory.make()
        appointment.customer.email = "not-an-email"
        payload = mapper.to_external_event(appointment)

        with pytest.raises(TerminalValidation, match="invalid attendee email"):
            mapper.validate_payload(payload)

    def test_end_before_start_rejected(self, mapper, appointment_factory):
        payload = mapper.to_external_event(appointment_factory.make())
        payload.end = payload.start.model_copy(update={"date_time": "2025-01-08T09:00:00-08:00"})

        with pytest.raises(TerminalValidation) as exc_info:
            mapper.validate_payload(payload)
        assert exc_info.value.code == "INVALID_PAYLOAD"


class TestFromExternalEvent:
    def test_round_trips_own_event(self, mapper, appointment_factory):
        """Test an event we created parses back into the same booking details."""
        body = mapper.to_external_event(appointment_factory.make()).to_api()
        body["id"] = "evt-1"

        candidate = mapper.from_external_event(body)

        assert candidate.external_event_id == "evt-1"
        assert candidate.customer_name == "Jane Doe"
        assert candidate.customer_email == "jane@example.com"
        assert candidate.customer_phone == "(562) 555-1234"
        assert candidate.pet_name == "Max"
        assert candidate.service_name == "Full Groom"
        assert candidate.notes == "Sensitive ears"
        assert candidate.appointment_id == "appt-1"
        assert candidate.start == datetime(2025, 1, 8, 18, 0, tzinfo=timezone.utc)
        assert candidate.end == datetime(2025, 1, 8, 19, 45, tzinfo=timezone.utc)

    def test_free_form_event(self, mapper):
        candidate = mapper.from_external_event(
            {
                "id": "ext-1",
                "summary": "Premium grooming for Bella",
                "description": "Owner: John Smith\nCall john.smith@example.com if late",
                "start": {"dateTime": "2025-01-09T17:00:00Z"},
                "end": {"dateTime": "2025-01-09T18:00:00Z"},
                "updated": "2025-01-07T12:00:00.000Z",
            }
        )

        assert candidate.service_name == "Premium Grooming"
        assert candidate.customer_name == "John Smith"
        assert candidate.customer_email == "john.smith@example.com"
        assert candidate.pet_name is None
        assert candidate.appointment_id is None
        assert candidate.external_updated_at == datetime(2025, 1, 7, 12, 0, tzinfo=timezone.utc)

    def test_attendee_fills_customer(self, mapper):
        candidate = mapper.from_external_event(
            {
                "id": "ext-2",
                "summary": "Bath",
                "attendees": [{"email": "sam@example.com", "displayName": "Sam Lee"}],
                "start": {"dateTime": "2025-01-09T09:00:00", "timeZone": "America/Los_Angeles"},
                "end": {"dateTime": "2025-01-09T10:00:00", "timeZone": "America/Los_Angeles"},
            }
        )

        assert candidate.customer_name == "Sam Lee"
        assert candidate.customer_email == "sam@example.com"
        assert candidate.start == datetime(2025, 1, 9, 17, 0, tzinfo=timezone.utc)

    def test_all_day_event(self, mapper):
        candidate = mapper.from_external_event(
            {"id": "ext-3", "summary": "Closed", "start": {"date": "2025-01-20"}, "end": {"date": "2025-01-21"}}
        )

        assert candidate.all_day is True
        assert candidate.end > candidate.start

    def test_missing_end_defaults_to_one_hour(self, mapper):
        candidate = mapper.from_external_event(
            {"id": "ext-4", "start": {"dateTime": "2025-01-09T17:00:00Z"}}
        )
        assert (candidate.end - candidate.start).total_seconds() == 3600

    def test_cancelled_flag(self, mapper):
        candidate = mapper.from_external_event(
            {"id": "ext-5", "status": "cancelled", "start": {"dateTime": "2025-01-09T17:00:00Z"}}
        )
        assert candidate.cancelled is True

    def test_event_without_times_rejected(self, mapper):
        with pytest.raises(TerminalValidation):
            mapper.from_external_event({"id": "ext-6", "summary": "No times"})

    def test_event_without_id_rejected(self, mapper):
        with pytest.raises(TerminalValidation):
            mapper.from_external_event({"start": {"dateTime": "2025-01-09T17:00:00Z"}})

    def test_addon_durations_are_included(self, mapper, appointment_factory):
        appointment = appointment_factory.make(
            {"addons": [Addon(name="Teeth Brushing", duration_minutes=10), Addon(name="Bow")]}
        )
        payload = mapper.to_external_event(appointment)
        assert payload.end.date_time == "2025-01-08T11:40:00-08:00"
