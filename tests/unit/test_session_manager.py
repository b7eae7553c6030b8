"""Tests for session management."""

import pytest
from unittest.mock import AsyncMock, patch

from redis.exceptions import RedisError

from dental_scheduler.core.intelligence.intent.types import Intent
from dental_scheduler.core.intelligence.session.manager import SessionManager
from dental_scheduler.core.intelligence.session.models import (
    ChatUser,
    ConversationContext,
    InvalidTransitionError,
    TenantInfo,
)
from dental_scheduler.core.intelligence.session.state import ConversationState, can_transition
from dental_scheduler.core.intelligence.slots.types import CollectedSlots

GET_REDIS = "dental_scheduler.core.intelligence.session.manager.get_redis"


@pytest.fixture
def tenant():
    return TenantInfo(id="cabinet-1", name="Smile Dental", timezone="UTC")


@pytest.fixture
def user():
    return ChatUser(user_id="user-1")


class TestSessionManager:
    """Test Redis session management."""

    @pytest.fixture
    def mock_redis(self):
        """Create mock Redis client."""
        mock = AsyncMock()
        mock.get = AsyncMock(return_value=None)
        mock.setex = AsyncMock()
        mock.delete = AsyncMock(return_value=1)
        return mock

    @pytest.fixture
    def manager(self):
        """Create session manager."""
        return SessionManager(ttl=600)

    @pytest.mark.asyncio
    async def test_create_session(self, manager, mock_redis, tenant, user):
        """Test session creation."""
        with patch(GET_REDIS, return_value=mock_redis):
            context = await manager.create(tenant, user)

            assert context.session_id is not None
            assert context.tenant.id == "cabinet-1"
            assert context.state == ConversationState.ACTIVE
            mock_redis.setex.assert_called_once()
            key, ttl, _ = mock_redis.setex.call_args.args
            assert key == f"dental:v1:chat:session:cabinet-1:{context.session_id}"
            assert ttl == 600

    @pytest.mark.asyncio
    async def test_create_session_fallback(self, manager, tenant, user):
        """Test session creation with Redis unavailable."""
        with patch(GET_REDIS, return_value=None):
            context = await manager.create(tenant, user)

            assert manager._key("cabinet-1", context.session_id) in manager._in_memory_fallback
            assert await manager.get("cabinet-1", context.session_id) is context

    @pytest.mark.asyncio
    async def test_save_error_falls_back_to_memory(self, manager, mock_redis, tenant, user):
        mock_redis.setex = AsyncMock(side_effect=RedisError("connection reset"))
        context = ConversationContext(user=user, tenant=tenant)

        with patch(GET_REDIS, return_value=mock_redis):
            saved = await manager.save(context)

        assert saved is False
        assert manager._key("cabinet-1", context.session_id) in manager._in_memory_fallback

    @pytest.mark.asyncio
    async def test_get_existing(self, manager, mock_redis, tenant, user):
        """Test getting existing session."""
        existing = ConversationContext(
            session_id="sess-123",
            user=user,
            tenant=tenant,
            state=ConversationState.WAITING_FOR_INPUT,
            current_intent=Intent.BOOK_APPOINTMENT,
        )
        mock_redis.get = AsyncMock(return_value=existing.to_json())

        with patch(GET_REDIS, return_value=mock_redis):
            context = await manager.get("cabinet-1", "sess-123")

            assert context is not None
            assert context.session_id == "sess-123"
            assert context.state == ConversationState.WAITING_FOR_INPUT
            assert context.current_intent == Intent.BOOK_APPOINTMENT

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, manager, mock_redis):
        """Test getting non-existent session."""
        with patch(GET_REDIS, return_value=mock_redis):
            assert await manager.get("cabinet-1", "nonexistent") is None

    @pytest.mark.asyncio
    async def test_get_or_create_existing(self, manager, mock_redis, tenant, user):
        """Test get_or_create with existing session."""
        existing = ConversationContext(session_id="existing-123", user=user, tenant=tenant)
        mock_redis.get = AsyncMock(return_value=existing.to_json())

        with patch(GET_REDIS, return_value=mock_redis):
            context = await manager.get_or_create(tenant, user, "existing-123")

            assert context.session_id == "existing-123"
            mock_redis.setex.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_or_create_keeps_requested_id(self, manager, mock_redis, tenant, user):
        """Test get_or_create creates the session under the requested id."""
        with patch(GET_REDIS, return_value=mock_redis):
            context = await manager.get_or_create(tenant, user, "new-456")

            assert context.session_id == "new-456"
            mock_redis.setex.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_or_create_other_users_session(self, manager, mock_redis, tenant, user):
        """A session owned by someone else is never handed out."""
        existing = ConversationContext(
            session_id="theirs", user=ChatUser(user_id="user-2"), tenant=tenant
        )
        mock_redis.get = AsyncMock(return_value=existing.to_json())

        with patch(GET_REDIS, return_value=mock_redis):
            context = await manager.get_or_create(tenant, user, "theirs")

            assert context.session_id != "theirs"
            assert context.user.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_delete_session(self, manager, mock_redis):
        """Test session deletion."""
        with patch(GET_REDIS, return_value=mock_redis):
            result = await manager.delete("cabinet-1", "sess-123")

            assert result is True
            mock_redis.delete.assert_called_once_with("dental:v1:chat:session:cabinet-1:sess-123")

    @pytest.mark.asyncio
    async def test_delete_missing(self, manager, mock_redis):
        mock_redis.delete = AsyncMock(return_value=0)

        with patch(GET_REDIS, return_value=mock_redis):
            assert await manager.delete("cabinet-1", "sess-123") is False


class TestConversationContext:
    """Test ConversationContext model."""

    def test_serialization_roundtrip(self, tenant, user):
        """Test JSON serialization/deserialization."""
        context = ConversationContext(
            session_id="test-123",
            user=ChatUser(user_id="staff-1", role="staff", assigned_cabinets=["cabinet-1"]),
            tenant=tenant,
            state=ConversationState.WAITING_FOR_INPUT,
            current_intent=Intent.CANCEL_APPOINTMENT,
            collected_slots=CollectedSlots(patient_email="jane@example.com", time="14:00"),
            confirmation_pending=True,
            pending_selection=["a1", "a2"],
        )
        context.add_message("user", "Cancel please")
        context.add_message("assistant", "Which one?", {"intent": "cancel_appointment"})

        restored = ConversationContext.from_json(context.to_json())

        assert restored.session_id == "test-123"
        assert restored.user.assigned_cabinets == ["cabinet-1"]
        assert restored.state == ConversationState.WAITING_FOR_INPUT
        assert restored.current_intent == Intent.CANCEL_APPOINTMENT
        assert restored.collected_slots == context.collected_slots
        assert restored.confirmation_pending is True
        assert restored.pending_selection == ["a1", "a2"]
        assert [m.content for m in restored.messages] == ["Cancel please", "Which one?"]
        assert restored.messages[1].metadata == {"intent": "cancel_appointment"}

    def test_max_history_limit(self, tenant, user):
        """Test history is limited to max messages."""
        context = ConversationContext(user=user, tenant=tenant, max_messages=3)

        for i in range(5):
            context.add_message("user", f"Message {i}")

        assert [m.content for m in context.messages] == ["Message 2", "Message 3", "Message 4"]

    def test_trailing_fallback_turns(self, tenant, user):
        context = ConversationContext(user=user, tenant=tenant)
        context.add_message("assistant", "Hi", {"intent": "greeting"})
        context.add_message("user", "??")
        context.add_message("assistant", "Sorry?", {"intent": "fallback"})
        context.add_message("user", "???")
        context.add_message("assistant", "Sorry?", {"intent": "fallback"})

        assert context.trailing_fallback_turns() == 2

    def test_blocked_turn_breaks_fallback_streak(self, tenant, user):
        context = ConversationContext(user=user, tenant=tenant)
        context.add_message("assistant", "Sorry?", {"intent": "fallback"})
        context.add_message("assistant", "I can't process that", {"intent": None})

        assert context.trailing_fallback_turns() == 0

    def test_extractor_context(self, tenant, user):
        context = ConversationContext(
            user=user,
            tenant=tenant,
            current_intent=Intent.BOOK_APPOINTMENT,
            collected_slots=CollectedSlots(date="2024-01-15"),
        )
        context.add_message("assistant", "What time would you prefer?")

        data = context.extractor_context()

        assert data["tenant"] == {"id": "cabinet-1", "name": "Smile Dental", "timezone": "UTC"}
        assert data["previous_state"]["current_intent"] == "book_appointment"
        assert data["previous_state"]["collected_slots"] == {"date": "2024-01-15"}
        assert data["previous_state"]["last_assistant_message"] == "What time would you prefer?"

    def test_terminal_transition_rejected(self, tenant, user):
        context = ConversationContext(user=user, tenant=tenant, state=ConversationState.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            context.transition(ConversationState.ACTIVE)

        assert context.is_terminal is True

    def test_reset_pending(self, tenant, user):
        context = ConversationContext(
            user=user, tenant=tenant, confirmation_pending=True, pending_selection=["a1"]
        )

        context.reset_pending()

        assert context.confirmation_pending is False
        assert context.pending_selection == []


class TestConversationState:
    """Test conversation state transitions."""

    def test_open_states_move_freely(self):
        assert can_transition(ConversationState.ACTIVE, ConversationState.WAITING_FOR_INPUT)
        assert can_transition(ConversationState.WAITING_FOR_INPUT, ConversationState.ACTIVE)
        assert can_transition(ConversationState.ACTIVE, ConversationState.COMPLETED)
        assert can_transition(ConversationState.WAITING_FOR_INPUT, ConversationState.ESCALATED)

    def test_terminal_states(self):
        for terminal in (ConversationState.COMPLETED, ConversationState.ESCALATED):
            for target in ConversationState:
                assert not can_transition(terminal, target)
