"""
Dental Scheduler Tests

Running Tests:
    pip install -e ".[test]"
    pytest tests -v

Test Coverage:
    - Availability calculation and time windows
    - Booking, reschedule and cancel against the in-memory and SQL stores
    - Concurrent booking of the same slot
    - Slot validation and session persistence
    - Intent extraction parsing
    - Dialogue orchestration (gating, confirmation, escalation, security)
    - Notification queueing
    - HTTP endpoints
"""
