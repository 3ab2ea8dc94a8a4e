"""Entitlement read model and the internal credit grant used by the payment relay."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...components.entitlements.service import EntitlementGate
from ...deps import get_current_user_id, get_entitlement_gate, require_internal_token
from ...platform.database import get_db
from ...schemas.session import CreditGrant

router = APIRouter()


@router.get("/me")
def get_my_entitlement(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    return gate.get_entitlement(db, user_id)


@router.post("/{user_id}/credits", dependencies=[Depends(require_internal_token)])
def grant_credits(
    user_id: str,
    data: CreditGrant,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    entry, created = gate.grant_credits(
        db,
        user_id,
        data.count,
        payment_verified=data.payment_verified,
        request_ref=data.idempotency_key,
        metadata=data.metadata,
    )
    return {
        "user_id": user_id,
        "granted": entry.delta,
        "credits_balance": gate.get_entitlement(db, user_id)["credits_balance"],
        "idempotency_key": entry.external_ref,
        "created": created,
    }
