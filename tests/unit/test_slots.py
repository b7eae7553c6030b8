"""Tests for collected slot validation."""

from dental_scheduler.core.intelligence.intent.types import Intent
from dental_scheduler.core.intelligence.slots.types import (
    INTENT_REQUIRED,
    CollectedSlots,
    Urgency,
)
from dental_scheduler.core.scheduling.types import TimeWindow


class TestFromMapping:
    """Test building slots from untrusted values."""

    def test_known_fields_kept(self):
        slots, rejected = CollectedSlots.from_mapping({
            "date": "2024-01-15",
            "time": "14:00",
            "service_type": " cleaning ",
            "time_window": "Morning",
            "urgency": "URGENT",
        })

        assert slots.date == "2024-01-15"
        assert slots.service_type == "cleaning"
        assert slots.time_window == TimeWindow.MORNING
        assert slots.urgency == Urgency.URGENT
        assert rejected == {}

    def test_unknown_fields_rejected(self):
        slots, rejected = CollectedSlots.from_mapping({"date": "2024-01-15", "sql": "DROP TABLE"})

        assert slots.date == "2024-01-15"
        assert rejected == {"sql": "DROP TABLE"}

    def test_camel_case_aliases(self):
        slots, _ = CollectedSlots.from_mapping({
            "patientEmail": "Jane@Example.com",
            "practitionerId": "prac-1",
            "appointmentId": "a1",
        })

        assert slots.patient_email == "jane@example.com"
        assert slots.practitioner_id == "prac-1"
        assert slots.appointment_id == "a1"

    def test_invalid_values_rejected(self):
        slots, rejected = CollectedSlots.from_mapping({
            "date": "2024-02-30",
            "time": "25:00",
            "patient_email": "not-an-email",
            "duration": 5,
            "time_window": "night",
            "notes": {"nested": True},
        })

        assert slots == CollectedSlots()
        assert set(rejected) == {"date", "time", "patient_email", "duration", "time_window", "notes"}

    def test_loose_time_normalized(self):
        slots, _ = CollectedSlots.from_mapping({"time": "9h30"})

        assert slots.time == "09:30"

    def test_unknown_timezone_rejected(self):
        known, _ = CollectedSlots.from_mapping({"timezone": "Europe/Paris"})
        unknown, rejected = CollectedSlots.from_mapping({"timezone": "Mars/Olympus_Mons"})
        traversal, _ = CollectedSlots.from_mapping({"timezone": "../etc/passwd"})

        assert known.timezone == "Europe/Paris"
        assert unknown.timezone is None
        assert rejected == {"timezone": "Mars/Olympus_Mons"}
        assert traversal.timezone is None

    def test_duration_bounds(self):
        ok, _ = CollectedSlots.from_mapping({"duration": "45"})
        flag, _ = CollectedSlots.from_mapping({"duration": True})

        assert ok.duration == 45
        assert flag.duration is None

    def test_empty_values_ignored(self):
        slots, rejected = CollectedSlots.from_mapping({"date": "", "time": None})

        assert slots == CollectedSlots()
        assert rejected == {}


class TestIntentRestriction:
    """Test per-intent field restriction."""

    def test_availability_drops_booking_fields(self):
        slots = CollectedSlots.for_intent(
            Intent.CHECK_AVAILABILITY,
            {"date": "2024-01-15", "patient_email": "jane@example.com", "time": "14:00"},
        )

        assert slots.date == "2024-01-15"
        assert slots.patient_email is None
        assert slots.time is None

    def test_greeting_accepts_nothing(self):
        assert CollectedSlots.for_intent(Intent.GREETING, {"date": "2024-01-15"}) == CollectedSlots()

    def test_cancel_accepts_reason(self):
        slots = CollectedSlots.for_intent(
            Intent.CANCEL_APPOINTMENT, {"reason": "sick", "date": "2024-01-15"}
        )

        assert slots.reason == "sick"
        assert slots.date is None


class TestMergeAndMissing:
    """Test slot accumulation."""

    def test_merge_overrides_set_values_only(self):
        current = CollectedSlots(date="2024-01-15", time="14:00")

        merged = current.merge(CollectedSlots(time="15:00"))

        assert merged.date == "2024-01-15"
        assert merged.time == "15:00"
        assert current.time == "14:00"

    def test_clear(self):
        slots = CollectedSlots(date="2024-01-15", time="14:00").clear("time")

        assert slots.time is None
        assert slots.date == "2024-01-15"

    def test_missing_in_asking_order(self):
        slots = CollectedSlots(service_type="cleaning")

        missing = slots.missing(INTENT_REQUIRED[Intent.BOOK_APPOINTMENT])

        assert missing == ["date", "time", "patient_email", "practitioner_id"]

    def test_to_dict_serializes_enums(self):
        slots = CollectedSlots(time_window=TimeWindow.EVENING, urgency=Urgency.ROUTINE)

        assert slots.to_dict() == {"time_window": "evening", "urgency": "routine"}
