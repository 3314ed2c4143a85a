# app/transactions/state_machine.py
from app.transactions.model import COMPLETED, FAILED, PENDING


class InvalidTransition(Exception):
    pass


ALLOWED = {
    PENDING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

TERMINAL_STATUSES = (COMPLETED, FAILED)


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal transaction transition: {old} -> {new}")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def status_for_result_code(result_code) -> str:
    """
    Daraja result code 0 means the customer paid; anything else
    (1032 cancelled, 1037 timeout, 2001 wrong PIN, ...) is a failure.
    """
    return COMPLETED if str(result_code).strip() == "0" else FAILED
