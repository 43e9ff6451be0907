"""Shared value types: methods, statuses, actors and money helpers."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable

from settlement_ledger.services.state_machine import PaymentStatus

__all__ = [
    "Actor",
    "ActorRole",
    "Clock",
    "CommissionSettlement",
    "Customer",
    "GatewayOutcome",
    "PaymentKind",
    "PaymentMethod",
    "PaymentStatus",
    "Reservation",
    "generate_reference",
    "parse_datetime",
    "round_amount",
    "serialize_value",
    "to_decimal",
    "utc_now",
]

Clock = Callable[[], datetime]

WHOLE_UNIT = Decimal("1")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def round_amount(value: Decimal) -> Decimal:
    """Round to whole currency units, half up."""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, strings and Decimals to Decimal. Floats go through str."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def serialize_value(obj: Any) -> Any:
    """Recursively convert values for JSON storage."""
    if isinstance(obj, dict):
        return {k: serialize_value(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize_value(v) for v in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


def parse_datetime(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def generate_reference(prefix: str, now: datetime) -> str:
    """Build an externally visible reference such as ``PAY_1700000000000_a1b2c3d4``."""
    millis = int(now.timestamp() * 1000)
    return f"{prefix}_{millis}_{secrets.token_hex(4)}"


class PaymentMethod(str, Enum):
    """Supported ways of paying."""

    CASH = "cash"
    WAVE = "wave"
    ORANGE_MONEY = "orange_money"
    MTN_MONEY = "mtn_money"
    MOOV_MONEY = "moov_money"

    @property
    def is_digital(self) -> bool:
        return self is not PaymentMethod.CASH

    @classmethod
    def digital(cls) -> tuple[PaymentMethod, ...]:
        return tuple(m for m in cls if m.is_digital)


class PaymentKind(str, Enum):
    TRIP = "trip"
    RECHARGE = "recharge"


class CommissionSettlement(str, Enum):
    """How the platform commission on a payment was (or was not) collected."""

    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    DEDUCTED = "deducted"
    FAILED = "failed"
    WAIVED = "waived"
    MANUALLY_SETTLED = "manually_settled"
    REFUNDED = "refunded"


class GatewayOutcome(str, Enum):
    """Outcome reported by the gateway for a payment."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


class ActorRole(str, Enum):
    DRIVER = "driver"
    RIDER = "rider"
    ADMIN = "admin"
    SYSTEM = "system"
    GATEWAY = "gateway"


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""

    actor_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    def label(self) -> str:
        return f"{self.role.value}:{self.actor_id}"

    @classmethod
    def system(cls, name: str = "settlement-ledger") -> Actor:
        return cls(actor_id=name, role=ActorRole.SYSTEM)

    @classmethod
    def gateway(cls, name: str = "gateway") -> Actor:
        return cls(actor_id=name, role=ActorRole.GATEWAY)


@dataclass(frozen=True)
class Reservation:
    """The trip a payment settles, with the driver facts commission depends on."""

    reservation_id: str
    rider_id: str
    driver_id: str
    distance_km: float = 0.0
    driver_rating: float = 0.0
    driver_trips_this_month: int = 0


@dataclass(frozen=True)
class Customer:
    """Payer contact details forwarded to the gateway."""

    phone_number: str
    name: str = ""
    email: str | None = None
