import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions
from database import SessionLocal
from generation import GenerationParseError, GenerationUnavailable
from jobs import BatchReport, build_jobs
from models import TransactionType, User
from periods import current_month, last_n_days, resolve_window
from scheduler import SchedulerManager
from schemas import (
    AlertOut,
    BatchReportOut,
    BudgetIn,
    BudgetOut,
    BudgetPatch,
    BudgetProgressOut,
    InsightOut,
    LifeChangeIn,
    ProfileIn,
    ProfileOut,
    TransactionIn,
    TransactionOut,
    UserOutcomeOut,
)
from services import BudgetService, InsightService, ProfileService, TransactionService


logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Watch")

budget_jobs = build_jobs()
scheduler_manager = SchedulerManager(budget_jobs)

RECENT_SPENDING_DAYS = 30


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: str = Header(..., min_length=1, max_length=128)) -> str:
    return x_user_id


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _profile_out(user: User) -> ProfileOut:
    return ProfileOut(
        id=user.id,
        display_name=user.display_name,
        monthly_income=user.monthly_income,
        currency=user.currency,
        has_device_token=bool(user.fcm_token),
    )


def _report_out(report: BatchReport) -> BatchReportOut:
    return BatchReportOut(
        job=report.job,
        ok=report.ok,
        skipped=report.skipped,
        failed=report.failed,
        outcomes=[
            UserOutcomeOut(user_id=o.user_id, status=o.status, reason=o.reason)
            for o in report.outcomes
        ],
    )


# profile ---------------------------------------------------------------


@app.get("/api/profile", response_model=ProfileOut)
def get_profile(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return _profile_out(ProfileService(db, user_id).get_or_create())


@app.put("/api/profile", response_model=ProfileOut)
def update_profile(
    data: ProfileIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return _profile_out(ProfileService(db, user_id).update(data))


# transactions ----------------------------------------------------------


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    window: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    txn_type: Optional[TransactionType] = Query(default=None, alias="type"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        resolved = resolve_window(window) if window else None
        return TransactionService(db, user_id).list(
            resolved, category=category, txn_type=txn_type, limit=limit
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).create(data)
    background_tasks.add_task(budget_jobs.on_transaction_created, user_id, txn.id)
    return txn


@app.get("/api/transactions/export.csv")
def export_transactions_csv(
    window: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        resolved = resolve_window(window) if window else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    content = export_transactions(TransactionService(db, user_id).list(resolved))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# budget ----------------------------------------------------------------


def _require_budget(db: Session, user_id: str):
    budget = BudgetService(db, user_id).get()
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


@app.get("/api/budget", response_model=BudgetOut)
def get_budget(db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    return _require_budget(db, user_id)


@app.put("/api/budget", response_model=BudgetOut)
def replace_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return BudgetService(db, user_id).replace(data)


@app.patch("/api/budget", response_model=BudgetOut)
def merge_budget(
    data: BudgetPatch,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return BudgetService(db, user_id).merge(data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/budget", status_code=204)
def delete_budget(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    try:
        BudgetService(db, user_id).delete()
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/budget/progress", response_model=BudgetProgressOut)
def budget_progress(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    try:
        return BudgetService(db, user_id).progress()
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/budget/alerts", response_model=list[AlertOut])
def budget_alerts(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return [AlertOut(**a.to_dict()) for a in BudgetService(db, user_id).alerts()]


# insights --------------------------------------------------------------


@app.get("/api/insights", response_model=list[InsightOut])
def list_insights(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return InsightService(db, user_id).recent(limit)


def _ai_call(fn, *args):
    try:
        return fn(*args)
    except GenerationParseError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"{exc}. The AI reply could not be understood, please try again.",
        ) from exc
    except GenerationUnavailable as exc:
        logger.warning(f"ai_request: generation unavailable error={exc}")
        raise HTTPException(status_code=503, detail="AI service unavailable") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("ai_request: generation failed")
        raise HTTPException(status_code=503, detail="AI service unavailable") from exc


def _recent_transactions(db: Session, user_id: str):
    window = last_n_days(RECENT_SPENDING_DAYS)
    return list(reversed(TransactionService(db, user_id).list(window)))


@app.post("/api/ai/analysis")
def ai_analysis(db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    profile = ProfileService(db, user_id).get_or_create()
    return _ai_call(
        budget_jobs.advisor.analyze_spending_patterns,
        _recent_transactions(db, user_id),
        profile,
    )


@app.post("/api/ai/recommendations")
def ai_recommendations(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    profile = ProfileService(db, user_id).get_or_create()
    budget = BudgetService(db, user_id).get()
    return _ai_call(
        budget_jobs.advisor.generate_budget_recommendations,
        _recent_transactions(db, user_id),
        profile,
        budget.categories if budget else None,
    )


@app.post("/api/ai/overspending")
def ai_overspending(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    profile = ProfileService(db, user_id).get_or_create()
    budget = _require_budget(db, user_id)
    month = current_month()
    transactions = list(reversed(TransactionService(db, user_id).list(month)))
    return _ai_call(
        budget_jobs.advisor.detect_overspending,
        transactions,
        budget.categories,
        profile,
    )


@app.post("/api/ai/monthly-summary")
def ai_monthly_summary(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    profile = ProfileService(db, user_id).get_or_create()
    budget = BudgetService(db, user_id).get()
    month = current_month()
    transactions = list(reversed(TransactionService(db, user_id).list(month)))
    summary = _ai_call(
        budget_jobs.advisor.monthly_summary,
        transactions,
        budget.categories if budget else None,
        profile,
    )
    return {"summary": summary}


@app.post("/api/ai/adjustments")
def ai_adjustments(
    data: LifeChangeIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    profile = ProfileService(db, user_id).get_or_create()
    budget = _require_budget(db, user_id)
    return _ai_call(
        budget_jobs.advisor.suggest_budget_adjustments,
        data.life_change,
        budget.categories,
        profile,
    )


# admin -----------------------------------------------------------------


@app.post("/admin/jobs/{name}", response_model=BatchReportOut)
def run_job(name: str):
    try:
        report = scheduler_manager.run_job(name, source="admin")
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if report is None:
        raise HTTPException(status_code=500, detail=f"Job {name} crashed")
    return _report_out(report)
