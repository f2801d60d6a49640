"""Purchase state machine transitions enforced by the purchase ledger."""

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}


def is_terminal(status: str) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
