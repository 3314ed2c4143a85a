import pytest

from app.transactions.state_machine import (
    InvalidTransition,
    assert_transition,
    is_terminal,
    status_for_result_code,
)


def test_valid_transitions():
    assert_transition("pending", "completed")
    assert_transition("pending", "failed")


def test_terminal_states_cannot_transition():
    with pytest.raises(InvalidTransition):
        assert_transition("completed", "failed")
    with pytest.raises(InvalidTransition):
        assert_transition("failed", "completed")
    with pytest.raises(InvalidTransition):
        assert_transition("completed", "pending")


def test_unknown_status_rejected():
    with pytest.raises(InvalidTransition):
        assert_transition("pending", "refunded")


def test_terminal_flags():
    assert is_terminal("completed")
    assert is_terminal("failed")
    assert not is_terminal("pending")


@pytest.mark.parametrize("code, expected", [(0, "completed"), ("0", "completed"), (" 0 ", "completed"), (1032, "failed"), ("2001", "failed")])
def test_status_for_result_code(code, expected):
    assert status_for_result_code(code) == expected
