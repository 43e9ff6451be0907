"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from settlement_ledger.ledger import SettlementLedger
from settlement_ledger.models.common import Actor, ActorRole


def get_ledger(request: Request) -> SettlementLedger:
    """Get the ledger attached to the application."""
    return request.app.state.ledger


def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Extract the calling actor from headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-Role",
        )
    return Actor(actor_id=x_actor_id, role=role)


def get_admin(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    """Require an admin actor."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return actor


# Type aliases for cleaner dependency injection
Ledger = Annotated[SettlementLedger, Depends(get_ledger)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
AdminActor = Annotated[Actor, Depends(get_admin)]
