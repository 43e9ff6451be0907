"""Settlement ledger services.

Service modules are imported directly (``settlement_ledger.services.recharge``);
only the state machine is re-exported here because the models depend on it.
"""

from settlement_ledger.services.state_machine import PaymentStateMachine, PaymentStatus

__all__ = [
    "PaymentStateMachine",
    "PaymentStatus",
]
