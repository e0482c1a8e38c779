from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tripo.db.session import get_db
from tripo.api.deps import get_current_principal
from tripo.core.security import Principal
from tripo.schemas.financial import (
    BalanceOut,
    EarningsOut,
    PayoutOut,
    PayoutPage,
    PayoutRequest,
    balance_out,
    earnings_out,
    payout_out,
)
from tripo.services import settlement_service

router = APIRouter(prefix="/financial", tags=["financial"])


@router.get("/earnings", response_model=EarningsOut)
def earnings(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return earnings_out(settlement_service.provider_earnings(db, principal.user_id, startDate, endDate))


@router.get("/balance", response_model=BalanceOut)
def balance(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return balance_out(settlement_service.available_balance(db, principal.user_id))


@router.get("/transactions")
def transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return settlement_service.transaction_history(db, principal.user_id, limit=limit, offset=offset)


@router.post("/payouts", response_model=PayoutOut)
def request_payout(body: PayoutRequest, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    payout = settlement_service.request_payout(db, principal.user_id, body.amount, body.payoutMethod, body.bankDetails)
    return payout_out(payout)


@router.get("/payouts", response_model=PayoutPage)
def list_payouts(
    status: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    items, total = settlement_service.list_payouts(db, principal.user_id, status=status, limit=limit, offset=offset)
    return PayoutPage(
        items=[payout_out(p) for p in items],
        total=total,
        limit=limit,
        offset=offset,
        hasMore=offset + len(items) < total,
    )


@router.get("/payouts/{payout_id}", response_model=PayoutOut)
def read_payout(payout_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payout_out(settlement_service.get_payout(db, payout_id, principal.user_id))


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutOut)
def cancel_payout(payout_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return payout_out(settlement_service.cancel_payout(db, payout_id, principal.user_id))
