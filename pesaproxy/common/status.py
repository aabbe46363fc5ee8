"""Payment status classification and reconciliation rules.

The gateway is authoritative for payment state; this module only decides how
observations from polling and IPN pushes are interpreted and merged.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class PaymentStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.CREATED: {
        PaymentStatus.PENDING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
}

# Order matters: "unsuccessful" must classify as failed before "success" matches.
_STATUS_KEYWORDS: tuple[tuple[PaymentStatus, tuple[str, ...]], ...] = (
    (PaymentStatus.CANCELLED, ("cancelled", "canceled")),
    (PaymentStatus.FAILED, ("failed", "error", "unsuccessful")),
    (PaymentStatus.COMPLETED, ("completed", "success")),
)


def classify_status(description: str | None) -> PaymentStatus:
    """Map a free-text gateway status description onto `PaymentStatus`."""

    text = (description or "").lower()
    for status, keywords in _STATUS_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return status
    return PaymentStatus.PENDING


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the observed lifecycle."""

    if current == new:
        return
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")


@dataclass(frozen=True)
class StatusObservation:
    """One sighting of a payment's status from a given source."""

    tracking_id: str
    status: PaymentStatus
    source: str
    description: str | None = None
    observed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, str | None]:
        return {
            "tracking_id": self.tracking_id,
            "status": self.status.value,
            "source": self.source,
            "description": self.description,
            "observed_at": self.observed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusObservation":
        return cls(
            tracking_id=data["tracking_id"],
            status=PaymentStatus(data["status"]),
            source=data["source"],
            description=data.get("description"),
            observed_at=data.get("observed_at") or datetime.now(timezone.utc).isoformat(),
        )


def reconcile(
    previous: StatusObservation | None, incoming: StatusObservation
) -> tuple[StatusObservation, bool]:
    """Merge a new observation into the last known one.

    Returns `(effective, mismatch)`. Terminal states are sticky: an incoming
    observation that contradicts a terminal state is rejected and flagged as a
    mismatch. A non-terminal incoming state never moves a payment backwards.
    """

    if previous is None:
        return incoming, False
    if is_terminal(previous.status):
        return previous, incoming.status != previous.status
    try:
        validate_transition(previous.status, incoming.status)
    except ValueError:
        # pending -> created: the later observation carries no new information.
        return previous, False
    return incoming, False
