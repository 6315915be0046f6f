"""Accounting report endpoints."""
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from shared import get_db, User
from services.accounting import reports
from services.accounting.reports import ReportError
from services.api.deps import get_current_user

router = APIRouter(prefix="/accounting", tags=["accounting"])


def _report(fetch: Callable, *args, **kwargs):
    try:
        return fetch(*args, **kwargs)
    except ReportError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/general-ledger")
def general_ledger(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"entries": _report(reports.get_general_ledger, db, user.user_id)}


@router.get("/profit-loss")
def profit_loss(
    period: str = Query("month", pattern="^(month|quarter|year)$"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _report(reports.get_profit_loss, db, user.user_id, period=period)


@router.get("/balance-sheet")
def balance_sheet(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _report(reports.get_balance_sheet, db, user.user_id)


@router.get("/trial-balance")
def trial_balance(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _report(reports.get_trial_balance, db, user.user_id)


@router.get("/cash-flow")
def cash_flow(
    period: str = Query("30days", pattern="^(30days|60days|90days)$"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _report(reports.get_cash_flow_projection, db, user.user_id, period=period)


@router.get("/insights")
def financial_insights(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _report(reports.get_financial_insights, db, user.user_id)


@router.get("/summary")
def financial_summary(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _report(reports.get_financial_summary, db, user.user_id)
