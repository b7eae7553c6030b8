"""Tests for the SQLAlchemy scheduling store on SQLite."""

import pytest
from datetime import datetime, timezone

from dental_scheduler.core.scheduling.availability import AvailabilityService
from dental_scheduler.core.scheduling.booking import BookingTransactionManager
from dental_scheduler.core.scheduling.errors import ConflictError, ResourceNotFound
from dental_scheduler.core.scheduling.sql_store import SqlSchedulingStore
from dental_scheduler.core.scheduling.tenants import SqlTenantResolver
from dental_scheduler.infra.database import (
    create_engine,
    create_session_factory,
    get_db_context,
    init_db,
)
from dental_scheduler.infra.notifications import InMemoryNotificationDispatcher
from dental_scheduler.models.database import (
    AppointmentStatus,
    Cabinet,
    Patient,
    Practitioner,
    Service,
)

CABINET_ID = "cab-sql"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'scheduler.db'}"


async def _setup(url):
    """Create the schema and one cabinet, return (engine, resolver)."""
    engine = create_engine(url, echo=False)
    await init_db(bind=engine)
    factory = create_session_factory(engine)

    async with get_db_context(factory) as db:
        db.add(Cabinet(id=CABINET_ID, name="Sql Dental", slug="sql-dental", timezone="UTC"))
        db.add(Practitioner(
            id="prac-1",
            cabinet_id=CABINET_ID,
            title="Dr",
            first_name="Alice",
            last_name="Martin",
            specialization="general",
        ))
        db.add(Practitioner(
            id="prac-other",
            cabinet_id="another-cabinet",
            first_name="Other",
            last_name="Dentist",
        ))
        db.add(Service(
            id="svc-clean",
            cabinet_id=CABINET_ID,
            name="Cleaning",
            category="hygiene",
            duration_minutes=30,
        ))
        db.add(Patient(
            id="pat-1",
            cabinet_id=CABINET_ID,
            email="jane@example.com",
            first_name="Jane",
            last_name="Doe",
        ))

    return engine, SqlTenantResolver(engine, session_factory=factory)


async def _book(manager, time, tenant_id=CABINET_ID, **overrides):
    values = {
        "tenant_id": tenant_id,
        "patient_email": "jane@example.com",
        "practitioner_id": "prac-1",
        "service_type": "cleaning",
        "date": "2024-01-15",
        "time": time,
    }
    values.update(overrides)
    return await manager.book_appointment(**values)


class TestSqlTenantResolver:
    """Test cabinet lookup."""

    @pytest.mark.asyncio
    async def test_resolve_by_id_and_slug(self, database_url):
        engine, resolver = await _setup(database_url)
        try:
            by_id = await resolver.resolve(CABINET_ID)
            by_slug = await resolver.resolve("sql-dental")

            assert by_id.name == "Sql Dental"
            assert by_slug.tenant_id == CABINET_ID
            assert isinstance(by_id.store, SqlSchedulingStore)
            assert by_id.hours_for("sunday") is None
        finally:
            await resolver.close()
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_unknown_cabinet(self, database_url):
        engine, resolver = await _setup(database_url)
        try:
            with pytest.raises(ResourceNotFound):
                await resolver.resolve("nowhere")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_registry_read_from_given_engine(self, database_url):
        engine, _ = await _setup(database_url)
        resolver = SqlTenantResolver(engine)
        try:
            handle = await resolver.resolve(CABINET_ID)

            assert handle.name == "Sql Dental"
        finally:
            await resolver.close()
            await engine.dispose()


class TestSqlBooking:
    """Test booking operations end to end on the SQL store."""

    @pytest.mark.asyncio
    async def test_book_and_conflict(self, database_url):
        engine, resolver = await _setup(database_url)
        notifications = InMemoryNotificationDispatcher()
        manager = BookingTransactionManager(
            resolver,
            notifications=notifications,
            clock=lambda: datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc),
        )
        try:
            appointment = await _book(manager, "14:00")

            assert appointment.patient_email == "jane@example.com"
            assert appointment.practitioner_name == "Dr Alice Martin"
            assert appointment.start_utc == datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)
            assert len(notifications.jobs) == 3

            with pytest.raises(ConflictError) as exc_info:
                await _book(manager, "14:15", duration=30)

            assert [c.id for c in exc_info.value.conflicts] == [appointment.id]
            found = await manager.find_patient_appointments(CABINET_ID, "jane@example.com")
            assert [a.id for a in found] == [appointment.id]
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_new_patient_rolled_back_on_conflict(self, database_url):
        engine, resolver = await _setup(database_url)
        manager = BookingTransactionManager(resolver)
        try:
            await _book(manager, "10:00")

            with pytest.raises(ConflictError):
                await _book(manager, "10:00", patient_email="ghost@example.com")

            assert await manager.find_patient_appointments(CABINET_ID, "ghost@example.com") == []
            handle = await resolver.resolve(CABINET_ID)
            async with handle.store.transaction() as tx:
                assert await tx.find_patient_by_email("ghost@example.com") is None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_practitioner_of_other_cabinet_not_found(self, database_url):
        engine, resolver = await _setup(database_url)
        manager = BookingTransactionManager(resolver)
        try:
            with pytest.raises(ResourceNotFound):
                await _book(manager, "10:00", practitioner_id="prac-other")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_reschedule_and_cancel(self, database_url):
        engine, resolver = await _setup(database_url)
        manager = BookingTransactionManager(resolver)
        try:
            first = await _book(manager, "09:00")
            second = await _book(manager, "11:00")

            same = await manager.reschedule_appointment(CABINET_ID, first.id, "2024-01-15", "09:00")
            assert same.version == 2

            with pytest.raises(ConflictError):
                await manager.reschedule_appointment(CABINET_ID, first.id, "2024-01-15", "11:00")

            moved = await manager.reschedule_appointment(CABINET_ID, first.id, "2024-01-15", "15:30")
            assert moved.time == "15:30"
            assert moved.version == 3

            await manager.cancel_appointment(CABINET_ID, second.id, reason="travel")
            with pytest.raises(ResourceNotFound):
                await manager.cancel_appointment(CABINET_ID, second.id)

            cancelled = await manager.find_patient_appointments(
                CABINET_ID, "jane@example.com", status=[AppointmentStatus.CANCELLED]
            )
            assert [a.id for a in cancelled] == [second.id]
            assert cancelled[0].cancellation_reason == "travel"
            assert cancelled[0].version == 2
        finally:
            await engine.dispose()


class TestSqlAvailability:
    """Test availability on the SQL store."""

    @pytest.mark.asyncio
    async def test_booked_slot_excluded(self, database_url):
        engine, resolver = await _setup(database_url)
        manager = BookingTransactionManager(resolver)
        service = AvailabilityService(
            resolver, clock=lambda: datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
        )
        try:
            await _book(manager, "14:00")

            result = await service.check_availability(CABINET_ID, "2024-01-15", "cleaning")
            times = [slot.start_time.strftime("%H:%M") for slot in result.slots]

            assert "14:00" not in times
            assert "13:30" in times
            assert len(times) == 19
            assert {slot.practitioner_id for slot in result.slots} == {"prac-1"}
        finally:
            await engine.dispose()
