"""
Request State Machine

Shared lifecycle of vetting requests and document approval requests.
pending is the only non-terminal state; approved and rejected are final.
"""
from typing import Any, Dict, Tuple

from ...models.db_models import RequestStatus
from ..errors import InvalidStateError


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_CONFIG = {
    RequestStatus.PENDING: {
        "description": "Awaiting a decision",
        "allowed_transitions": [RequestStatus.APPROVED, RequestStatus.REJECTED],
        "terminal": False,
    },
    RequestStatus.APPROVED: {
        "description": "Approved by the reviewer",
        "allowed_transitions": [],  # Terminal state
        "terminal": True,
    },
    RequestStatus.REJECTED: {
        "description": "Rejected by the reviewer",
        "allowed_transitions": [],  # Terminal state
        "terminal": True,
    },
}


def get_state_config(state: RequestStatus) -> Dict[str, Any]:
    """Get configuration for a state."""
    return STATE_CONFIG.get(RequestStatus(state), {})


def is_terminal(state: RequestStatus) -> bool:
    return get_state_config(state).get("terminal", False)


def can_transition(from_state: RequestStatus, to_state: RequestStatus) -> Tuple[bool, str]:
    """
    Check if a state transition is allowed.

    Returns (allowed, reason)
    """
    from_state, to_state = RequestStatus(from_state), RequestStatus(to_state)
    config = get_state_config(from_state)
    if to_state in config.get("allowed_transitions", []):
        return True, "Transition allowed"
    if config.get("terminal"):
        return False, f"Request has already been {from_state.value}"
    return False, f"Cannot transition from {from_state.value} to {to_state.value}"


def ensure_transition(from_state: RequestStatus, to_state: RequestStatus) -> None:
    """Raise InvalidStateError unless from_state -> to_state is allowed."""
    allowed, reason = can_transition(from_state, to_state)
    if not allowed:
        raise InvalidStateError(reason, {
            "current_status": RequestStatus(from_state).value,
            "requested_status": RequestStatus(to_state).value,
        })
