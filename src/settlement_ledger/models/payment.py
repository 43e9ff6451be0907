"""Payment aggregate: one record per trip charge or wallet recharge.

Payments are never deleted. Cancellation and refund are statuses, and
every change is appended to the audit log. Once a payment is COMPLETED
its gross, commission and net amounts are frozen; assigning them raises.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from settlement_ledger.models.common import (
    Actor,
    CommissionSettlement,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    parse_datetime,
    serialize_value,
)
from settlement_ledger.services.state_machine import PaymentStateMachine


@dataclass(frozen=True)
class CommissionQuote:
    """Commission computed at initiation and frozen on the payment."""

    rate: Decimal
    original_rate: Decimal
    reduction: Decimal
    amount: Decimal
    reason_code: str

    @classmethod
    def none(cls) -> CommissionQuote:
        zero = Decimal("0")
        return cls(rate=zero, original_rate=zero, reduction=zero, amount=zero, reason_code="NONE")

    def to_dict(self) -> dict[str, Any]:
        return serialize_value(
            {
                "rate": self.rate,
                "original_rate": self.original_rate,
                "reduction": self.reduction,
                "amount": self.amount,
                "reason_code": self.reason_code,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommissionQuote:
        return cls(
            rate=Decimal(data["rate"]),
            original_rate=Decimal(data["original_rate"]),
            reduction=Decimal(data["reduction"]),
            amount=Decimal(data["amount"]),
            reason_code=data["reason_code"],
        )


@dataclass(frozen=True)
class BonusQuote:
    """Bonuses earned by a payment, credited only once it completes."""

    performance: Decimal = Decimal("0")
    recharge: Decimal = Decimal("0")
    details: tuple[str, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.performance + self.recharge

    def to_dict(self) -> dict[str, Any]:
        return serialize_value(
            {"performance": self.performance, "recharge": self.recharge, "details": self.details}
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BonusQuote:
        return cls(
            performance=Decimal(data["performance"]),
            recharge=Decimal(data["recharge"]),
            details=tuple(data.get("details", ())),
        )


@dataclass(frozen=True)
class AuditEntry:
    action: str
    timestamp: datetime
    actor: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    message: str
    timestamp: datetime
    context: dict[str, Any] = field(default_factory=dict)


# Attributes that may not be reassigned once amounts are immutable
_FROZEN_AMOUNTS = frozenset({"gross_amount", "fee", "net_amount", "commission", "bonus"})


@dataclass
class Payment:
    """A single settlement between a payer and a beneficiary."""

    payment_id: str
    reference: str
    kind: PaymentKind
    payer_id: str
    beneficiary_id: str
    method: PaymentMethod
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    commission: CommissionQuote
    bonus: BonusQuote
    created_at: datetime
    updated_at: datetime
    status: PaymentStatus = PaymentStatus.PENDING
    commission_settlement: CommissionSettlement = CommissionSettlement.NOT_APPLICABLE
    currency: str = "XOF"
    reservation_id: str | None = None
    auto_recharge: bool = False
    completed_at: datetime | None = None
    gateway_handle: str | None = None
    redirect_url: str | None = None
    external_transaction_id: str | None = None
    failure_reason: str | None = None
    rule_snapshot: dict[str, Any] = field(default_factory=dict)
    audit_log: list[AuditEntry] = field(default_factory=list)
    errors: list[ErrorEntry] = field(default_factory=list)
    version: int = 0

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _FROZEN_AMOUNTS and "status" in self.__dict__:
            if PaymentStateMachine.are_amounts_immutable(self.status):
                raise AttributeError(
                    f"{name} is immutable once payment {self.reference} is {self.status.value}"
                )
        super().__setattr__(name, value)

    @classmethod
    def create(
        cls,
        *,
        reference: str,
        kind: PaymentKind,
        payer_id: str,
        beneficiary_id: str,
        method: PaymentMethod,
        gross_amount: Decimal,
        fee: Decimal,
        commission: CommissionQuote,
        bonus: BonusQuote,
        now: datetime,
        actor: Actor,
        currency: str = "XOF",
        reservation_id: str | None = None,
        auto_recharge: bool = False,
        rule_snapshot: dict[str, Any] | None = None,
    ) -> Payment:
        """Create a PENDING payment, deriving net so the amounts balance."""
        net = gross_amount - commission.amount - fee
        if net < 0:
            raise ValueError("commission and fee exceed the gross amount")
        payment = cls(
            payment_id=str(uuid.uuid4()),
            reference=reference,
            kind=kind,
            payer_id=payer_id,
            beneficiary_id=beneficiary_id,
            method=method,
            gross_amount=gross_amount,
            fee=fee,
            net_amount=net,
            commission=commission,
            bonus=bonus,
            created_at=now,
            updated_at=now,
            commission_settlement=(
                CommissionSettlement.PENDING
                if commission.amount > 0
                else CommissionSettlement.NOT_APPLICABLE
            ),
            currency=currency,
            reservation_id=reservation_id,
            auto_recharge=auto_recharge,
            rule_snapshot=dict(rule_snapshot or {}),
        )
        payment.record(
            "INITIATED",
            actor,
            now,
            gross_amount=gross_amount,
            method=method,
            commission=commission.amount,
        )
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status is PaymentStatus.PENDING

    @property
    def is_final(self) -> bool:
        return PaymentStateMachine.is_final(self.status)

    @property
    def amounts_balance(self) -> bool:
        return self.net_amount + self.commission.amount + self.fee == self.gross_amount

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record(self, action: str, actor: Actor, now: datetime, **payload: Any) -> None:
        """Append an audit entry."""
        self.audit_log.append(
            AuditEntry(action=action, timestamp=now, actor=actor.label(), payload=serialize_value(payload))
        )
        self.updated_at = now

    def record_error(self, code: str, message: str, now: datetime, **context: Any) -> None:
        """Append an error entry. Errors never change financial state."""
        self.errors.append(
            ErrorEntry(code=code, message=message, timestamp=now, context=serialize_value(context))
        )
        self.updated_at = now

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self, to_status: PaymentStatus, actor: Actor, now: datetime, **payload: Any
    ) -> None:
        PaymentStateMachine.validate_transition(self.status, to_status)
        previous = self.status
        self.status = to_status
        self.record(to_status.value, actor, now, previous_status=previous, **payload)

    def complete(
        self, actor: Actor, now: datetime, external_transaction_id: str | None = None, **payload: Any
    ) -> None:
        if not self.amounts_balance:
            raise ValueError(f"payment {self.reference} amounts do not balance")
        if external_transaction_id:
            self.external_transaction_id = external_transaction_id
        self.completed_at = now
        self._transition(PaymentStatus.COMPLETED, actor, now, **payload)

    def fail(self, reason: str, actor: Actor, now: datetime, **payload: Any) -> None:
        self._transition(PaymentStatus.FAILED, actor, now, reason=reason, **payload)
        self.failure_reason = reason

    def cancel(self, actor: Actor, now: datetime, **payload: Any) -> None:
        self._transition(PaymentStatus.CANCELLED, actor, now, **payload)

    def refund(self, reason: str, actor: Actor, now: datetime, **payload: Any) -> None:
        self._transition(PaymentStatus.REFUNDED, actor, now, reason=reason, **payload)

    def set_commission_settlement(
        self, settlement: CommissionSettlement, actor: Actor, now: datetime, **payload: Any
    ) -> None:
        previous = self.commission_settlement
        self.commission_settlement = settlement
        self.record(
            "COMMISSION_" + settlement.value.upper(),
            actor,
            now,
            previous_settlement=previous,
            **payload,
        )

    def attach_gateway_handle(
        self, handle: str, redirect_url: str | None, actor: Actor, now: datetime
    ) -> None:
        self.gateway_handle = handle
        self.redirect_url = redirect_url
        self.record("GATEWAY_INITIATED", actor, now, handle=handle, redirect_url=redirect_url)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "payment_id": self.payment_id,
            "reference": self.reference,
            "kind": self.kind.value,
            "payer_id": self.payer_id,
            "beneficiary_id": self.beneficiary_id,
            "method": self.method.value,
            "gross_amount": str(self.gross_amount),
            "fee": str(self.fee),
            "net_amount": str(self.net_amount),
            "commission": self.commission.to_dict(),
            "bonus": self.bonus.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "status": self.status.value,
            "commission_settlement": self.commission_settlement.value,
            "currency": self.currency,
            "reservation_id": self.reservation_id,
            "auto_recharge": self.auto_recharge,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "gateway_handle": self.gateway_handle,
            "redirect_url": self.redirect_url,
            "external_transaction_id": self.external_transaction_id,
            "failure_reason": self.failure_reason,
            "rule_snapshot": serialize_value(self.rule_snapshot),
            "audit_log": [
                {
                    "action": e.action,
                    "timestamp": e.timestamp.isoformat(),
                    "actor": e.actor,
                    "payload": e.payload,
                }
                for e in self.audit_log
            ],
            "errors": [
                {
                    "code": e.code,
                    "message": e.message,
                    "timestamp": e.timestamp.isoformat(),
                    "context": e.context,
                }
                for e in self.errors
            ],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int) -> Payment:
        """Rebuild a payment from ``to_document`` output."""
        return cls(
            payment_id=doc["payment_id"],
            reference=doc["reference"],
            kind=PaymentKind(doc["kind"]),
            payer_id=doc["payer_id"],
            beneficiary_id=doc["beneficiary_id"],
            method=PaymentMethod(doc["method"]),
            gross_amount=Decimal(doc["gross_amount"]),
            fee=Decimal(doc["fee"]),
            net_amount=Decimal(doc["net_amount"]),
            commission=CommissionQuote.from_dict(doc["commission"]),
            bonus=BonusQuote.from_dict(doc["bonus"]),
            created_at=parse_datetime(doc["created_at"]),
            updated_at=parse_datetime(doc["updated_at"]),
            status=PaymentStatus(doc["status"]),
            commission_settlement=CommissionSettlement(doc["commission_settlement"]),
            currency=doc["currency"],
            reservation_id=doc.get("reservation_id"),
            auto_recharge=doc.get("auto_recharge", False),
            completed_at=parse_datetime(doc.get("completed_at")),
            gateway_handle=doc.get("gateway_handle"),
            redirect_url=doc.get("redirect_url"),
            external_transaction_id=doc.get("external_transaction_id"),
            failure_reason=doc.get("failure_reason"),
            rule_snapshot=doc.get("rule_snapshot", {}),
            audit_log=[
                AuditEntry(
                    action=e["action"],
                    timestamp=parse_datetime(e["timestamp"]),
                    actor=e["actor"],
                    payload=e["payload"],
                )
                for e in doc.get("audit_log", [])
            ],
            errors=[
                ErrorEntry(
                    code=e["code"],
                    message=e["message"],
                    timestamp=parse_datetime(e["timestamp"]),
                    context=e["context"],
                )
                for e in doc.get("errors", [])
            ],
            version=version,
        )
