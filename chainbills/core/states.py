"""Order state vocabulary and the fulfillment state machine."""
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class ServiceType(str, Enum):
    """Utility services that can be bought through the gateway."""

    AIRTIME = "airtime"
    INTERNET = "internet"
    ELECTRICITY = "electricity"
    TV = "tv"

    @classmethod
    def _missing_(cls, value: Any) -> Optional["ServiceType"]:
        # "data" is the storefront name for internet bundles
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "data":
                return cls.INTERNET
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class OnChainStatus(str, Enum):
    """Caller-asserted state of the crypto payment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class VtpassStatus(str, Enum):
    """Fulfillment state owned by the reconciliation engine."""

    PENDING = "pending"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    FAILED_API_CALL = "failed_api_call"
    FAILED_MALFORMED_RESPONSE = "failed_malformed_response"
    REFUNDED = "refunded"


# Forward-only transitions the engine may perform. REFUNDED is reached only by
# an external refund workflow and is never written here.
VALID_TRANSITIONS: Dict[VtpassStatus, FrozenSet[VtpassStatus]] = {
    VtpassStatus.PENDING: frozenset(
        {
            VtpassStatus.SUCCESSFUL,
            VtpassStatus.FAILED,
            VtpassStatus.FAILED_API_CALL,
            VtpassStatus.FAILED_MALFORMED_RESPONSE,
        }
    ),
    VtpassStatus.SUCCESSFUL: frozenset(),
    VtpassStatus.FAILED: frozenset(),
    VtpassStatus.FAILED_API_CALL: frozenset(),
    VtpassStatus.FAILED_MALFORMED_RESPONSE: frozenset(),
    VtpassStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[VtpassStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


def can_transition(current: str, target: str) -> bool:
    """Return True if the engine may move an order from ``current`` to ``target``."""
    try:
        return VtpassStatus(target) in VALID_TRANSITIONS[VtpassStatus(current)]
    except ValueError:
        return False
