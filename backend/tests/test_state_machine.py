"""
Tests for the shared request lifecycle.

pending → approved | rejected, exactly once; terminal states never move.
"""
import pytest

from dhruva.models.db_models import RequestStatus
from dhruva.services.errors import InvalidStateError
from dhruva.services.workflow.state_machine import (
    STATE_CONFIG, can_transition, ensure_transition, get_state_config, is_terminal,
)


class TestStateConfig:

    def test_every_status_configured(self):
        for status in RequestStatus:
            assert status in STATE_CONFIG

    def test_only_pending_is_open(self):
        assert is_terminal(RequestStatus.PENDING) is False
        assert is_terminal(RequestStatus.APPROVED) is True
        assert is_terminal(RequestStatus.REJECTED) is True

    def test_accepts_raw_values(self):
        assert get_state_config("pending")["terminal"] is False


class TestTransitions:

    @pytest.mark.parametrize("target", [RequestStatus.APPROVED, RequestStatus.REJECTED])
    def test_pending_can_be_decided(self, target):
        allowed, _ = can_transition(RequestStatus.PENDING, target)
        assert allowed is True

    @pytest.mark.parametrize("source", [RequestStatus.APPROVED, RequestStatus.REJECTED])
    @pytest.mark.parametrize("target", list(RequestStatus))
    def test_terminal_states_never_move(self, source, target):
        allowed, reason = can_transition(source, target)
        assert allowed is False
        assert source.value in reason

    def test_pending_to_pending_not_allowed(self):
        allowed, _ = can_transition(RequestStatus.PENDING, RequestStatus.PENDING)
        assert allowed is False

    def test_ensure_transition_raises_with_context(self):
        with pytest.raises(InvalidStateError) as exc_info:
            ensure_transition(RequestStatus.APPROVED, RequestStatus.REJECTED)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["current_status"] == "approved"
        assert exc_info.value.details["requested_status"] == "rejected"
