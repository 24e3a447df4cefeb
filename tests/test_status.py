import pytest

from bakery import status
from bakery.exceptions import InvalidStatusTransition


@pytest.mark.parametrize(
    "value, expected",
    [("PENDING", "pending"), (" Shipped ", "shipped"), ("已送達", "delivered")],
)
def test_normalize_accepts_any_case_and_labels(value, expected):
    assert status.normalize_status(value) == expected


def test_normalize_rejects_unknown_status():
    with pytest.raises(InvalidStatusTransition):
        status.normalize_status("lost")


def test_pending_can_jump_straight_to_delivered():
    assert status.ensure_transition("pending", "DELIVERED") == "delivered"


@pytest.mark.parametrize("current", ["delivered", "cancelled"])
def test_terminal_statuses_have_no_transitions(current):
    assert status.available_transitions(current) == []
    with pytest.raises(InvalidStatusTransition):
        status.ensure_transition(current, "processing")


def test_shipped_cannot_go_back_to_processing():
    assert not status.can_transition("shipped", "processing")


def test_cancel_and_edit_rules():
    assert status.can_cancel("processing")
    assert not status.can_cancel("shipped")
    assert status.can_edit("shipped")
    assert not status.can_edit("delivered")


def test_display_falls_back_to_raw_value():
    assert status.get_status_display("processing") == "處理中"
    assert status.get_status_display("weird") == "weird"
