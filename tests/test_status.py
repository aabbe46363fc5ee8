"""Unit tests for status classification and reconciliation guardrails."""

import pytest

from pesaproxy.common.status import (
    PaymentStatus,
    StatusObservation,
    classify_status,
    reconcile,
    validate_transition,
)


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("Completed successfully", PaymentStatus.COMPLETED),
        ("COMPLETED", PaymentStatus.COMPLETED),
        ("Transaction Failed", PaymentStatus.FAILED),
        ("Payment error", PaymentStatus.FAILED),
        ("Unsuccessful", PaymentStatus.FAILED),
        ("Cancelled by user", PaymentStatus.CANCELLED),
        ("canceled", PaymentStatus.CANCELLED),
        ("Invoiced", PaymentStatus.PENDING),
        ("", PaymentStatus.PENDING),
        (None, PaymentStatus.PENDING),
    ],
)
def test_classify_status(description, expected):
    assert classify_status(description) == expected


def test_valid_transition():
    validate_transition(PaymentStatus.CREATED, PaymentStatus.PENDING)
    validate_transition(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
    validate_transition(PaymentStatus.FAILED, PaymentStatus.FAILED)


def test_terminal_states_do_not_move():
    """Leaving a terminal state must raise; the gateway never reopens a payment."""

    with pytest.raises(ValueError):
        validate_transition(PaymentStatus.COMPLETED, PaymentStatus.FAILED)
    with pytest.raises(ValueError):
        validate_transition(PaymentStatus.CANCELLED, PaymentStatus.PENDING)


def _obs(status: PaymentStatus, source: str = "poll") -> StatusObservation:
    return StatusObservation(tracking_id="TRK-1", status=status, source=source)


def test_reconcile_first_observation_wins():
    incoming = _obs(PaymentStatus.PENDING)
    assert reconcile(None, incoming) == (incoming, False)


def test_reconcile_moves_forward():
    incoming = _obs(PaymentStatus.COMPLETED, "ipn")
    effective, mismatch = reconcile(_obs(PaymentStatus.PENDING), incoming)
    assert effective is incoming
    assert mismatch is False


def test_reconcile_keeps_terminal_and_flags_mismatch():
    previous = _obs(PaymentStatus.COMPLETED, "ipn")
    effective, mismatch = reconcile(previous, _obs(PaymentStatus.FAILED))
    assert effective is previous
    assert mismatch is True


def test_reconcile_agreeing_terminal_is_not_a_mismatch():
    previous = _obs(PaymentStatus.COMPLETED, "ipn")
    effective, mismatch = reconcile(previous, _obs(PaymentStatus.COMPLETED))
    assert effective is previous
    assert mismatch is False


def test_reconcile_never_moves_backwards():
    previous = _obs(PaymentStatus.PENDING)
    effective, mismatch = reconcile(previous, _obs(PaymentStatus.CREATED, "submit"))
    assert effective is previous
    assert mismatch is False


def test_observation_round_trips_through_dict():
    observation = _obs(PaymentStatus.CANCELLED, "ipn")
    assert StatusObservation.from_dict(observation.to_dict()) == observation
