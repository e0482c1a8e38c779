from typing import List, Literal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tripo.db.session import get_db
from tripo.api.deps import require_roles
from tripo.core.security import Principal
from tripo.schemas.financial import AuditEntryOut, PayoutFailRequest, PayoutOut, audit_entry_out, payout_out
from tripo.services import settlement_service
from tripo.services.audit_service import audit_trail

router = APIRouter(prefix="/ops", tags=["ops"])

OPS_ROLES = ("ops", "finance", "admin")


@router.post("/payouts/{payout_id}/process", response_model=PayoutOut)
def process_payout(payout_id: str, db: Session = Depends(get_db), principal: Principal = Depends(require_roles(*OPS_ROLES))):
    return payout_out(settlement_service.start_payout_processing(db, payout_id, principal.user_id))


@router.post("/payouts/{payout_id}/complete", response_model=PayoutOut)
def complete_payout(payout_id: str, db: Session = Depends(get_db), principal: Principal = Depends(require_roles(*OPS_ROLES))):
    return payout_out(settlement_service.complete_payout(db, payout_id, principal.user_id))


@router.post("/payouts/{payout_id}/fail", response_model=PayoutOut)
def fail_payout(
    payout_id: str,
    body: PayoutFailRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(*OPS_ROLES)),
):
    return payout_out(settlement_service.fail_payout(db, payout_id, principal.user_id, body.reason))


@router.get("/audit/{entity_type}/{entity_id}", response_model=List[AuditEntryOut])
def entity_audit_trail(
    entity_type: Literal["ride", "booking", "payment", "payout"],
    entity_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles(*OPS_ROLES)),
):
    return [audit_entry_out(a) for a in audit_trail(db, entity_type, entity_id)]
