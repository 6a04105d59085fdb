"""Per-user budget jobs driven by the scheduler and by new transactions.

Batches walk every user sequentially. Each user runs in its own session, and a
failure is recorded in the returned :class:`BatchReport` before moving on to
the next user; nothing raised for one user aborts the batch or leaves it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal, Optional

from sqlalchemy.orm import Session

from budgeting import (
    Alert,
    AlertMessage,
    aggregate_by_category,
    alert_for,
    budget_alert_message,
    build_alerts,
    category_alert_message,
    normalize_category,
    truncate,
)
from config import Settings, get_settings
from database import SessionFactory, session_scope
from generation import GeminiTextGenerator, SpendingAdvisor
from models import InsightType, TransactionType
from notifications import PushSender, build_push_sender, dispatch
from periods import current_month, last_n_days, local_now, previous_month
from services import (
    BudgetService,
    InsightService,
    ProfileService,
    TransactionService,
    all_user_ids,
)


logger = logging.getLogger(__name__)

WEEKLY_WINDOW_DAYS = 7
NOTIFICATION_PREVIEW_LENGTH = 100


@dataclass
class UserOutcome:
    user_id: str
    status: Literal["ok", "skipped", "failed"]
    reason: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class BatchReport:
    job: str
    outcomes: list[UserOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def ok(self) -> int:
        return self._count("ok")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    def summary(self) -> str:
        return (
            f"{self.job}: users={len(self.outcomes)} ok={self.ok} "
            f"skipped={self.skipped} failed={self.failed}"
        )


UserHandler = Callable[[Session, str], UserOutcome]


class BudgetJobs:
    def __init__(
        self,
        sessions: SessionFactory,
        advisor: SpendingAdvisor,
        sender: PushSender,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        self.sessions = sessions
        self.advisor = advisor
        self.sender = sender
        self.now = now

    def _run_batch(self, job: str, handler: UserHandler) -> BatchReport:
        report = BatchReport(job)
        try:
            with self.sessions() as session:
                user_ids = all_user_ids(session)
        except Exception:
            logger.exception(f"{job}: could not list users")
            return report

        for user_id in user_ids:
            try:
                with self.sessions() as session:
                    outcome = handler(session, user_id)
            except Exception as exc:
                logger.exception(f"{job}: user={user_id} failed")
                outcome = UserOutcome(user_id, "failed", str(exc), exc)
            report.outcomes.append(outcome)

        logger.info(report.summary())
        return report

    def _notify(self, session: Session, user_id: str, message: AlertMessage) -> bool:
        token = ProfileService(session, user_id).device_token()
        return dispatch(self.sender, user_id, token, message)

    # daily -------------------------------------------------------------

    def _daily_for_user(self, session: Session, user_id: str) -> UserOutcome:
        budget = BudgetService(session, user_id).get()
        if not budget:
            return UserOutcome(user_id, "skipped", "no budget")

        window = current_month(self.now())
        transactions = TransactionService(session, user_id).list(
            window, txn_type=TransactionType.expense
        )
        spending = aggregate_by_category(reversed(transactions), window)
        alerts = build_alerts(spending, budget.categories or {})
        message = budget_alert_message(alerts)
        if message is None:
            return UserOutcome(user_id, "ok", "no alerts")
        sent = self._notify(session, user_id, message)
        return UserOutcome(user_id, "ok", f"alerts={len(alerts)} sent={sent}")

    def run_daily_budget_check(self) -> BatchReport:
        return self._run_batch("daily_budget_check", self._daily_for_user)

    # weekly ------------------------------------------------------------

    def _weekly_for_user(self, session: Session, user_id: str) -> UserOutcome:
        window = last_n_days(WEEKLY_WINDOW_DAYS, self.now())
        transactions = TransactionService(session, user_id).list(window)
        if not transactions:
            return UserOutcome(user_id, "skipped", "no transactions")

        profile = ProfileService(session, user_id).get()
        draft = self.advisor.weekly_insight(reversed(transactions), profile)
        InsightService(session, user_id).add(
            InsightType.weekly,
            summary=draft.summary,
            total_spent=draft.total_spent,
            transaction_count=draft.transaction_count,
            top_categories=draft.top_categories,
            concerns=draft.concerns,
            recommendation=draft.recommendation,
        )
        message = AlertMessage(
            title="📊 Your Weekly Spending Insights",
            body=truncate(draft.summary, NOTIFICATION_PREVIEW_LENGTH),
            data={"type": "weekly_insights"},
        )
        # insight is already committed; a failed push leaves it stored
        sent = self._notify(session, user_id, message)
        return UserOutcome(user_id, "ok", f"generated={draft.generated} sent={sent}")

    def run_weekly_insights(self) -> BatchReport:
        return self._run_batch("weekly_insights", self._weekly_for_user)

    # monthly -----------------------------------------------------------

    def _monthly_for_user(self, session: Session, user_id: str) -> UserOutcome:
        window = previous_month(self.now())
        transactions = TransactionService(session, user_id).list(window)
        if not transactions:
            return UserOutcome(user_id, "skipped", "no transactions")

        profile = ProfileService(session, user_id).get()
        budget = BudgetService(session, user_id).get()
        limits = budget.categories if budget else {}
        draft = self.advisor.monthly_insight(reversed(transactions), limits, profile)
        InsightService(session, user_id).add(
            InsightType.monthly,
            summary=draft.summary,
            total_spent=draft.total_spent,
            transaction_count=draft.transaction_count,
            top_categories=draft.top_categories,
        )
        message = AlertMessage(
            title="📅 Your Monthly Spending Summary",
            body=truncate(draft.summary, NOTIFICATION_PREVIEW_LENGTH),
            data={"type": "monthly_summary"},
        )
        sent = self._notify(session, user_id, message)
        return UserOutcome(user_id, "ok", f"sent={sent}")

    def run_monthly_summaries(self) -> BatchReport:
        return self._run_batch("monthly_summaries", self._monthly_for_user)

    # per transaction ---------------------------------------------------

    def on_transaction_created(
        self, user_id: str, transaction_id: int
    ) -> Optional[Alert]:
        """Re-check the new transaction's category; other categories wait for the daily run."""
        try:
            with self.sessions() as session:
                return self._check_transaction(session, user_id, transaction_id)
        except Exception:
            logger.exception(
                f"transaction_check: user={user_id} transaction={transaction_id} failed"
            )
            return None

    def _check_transaction(
        self, session: Session, user_id: str, transaction_id: int
    ) -> Optional[Alert]:
        txn = TransactionService(session, user_id).get(transaction_id)
        if txn.type != TransactionType.expense:
            return None
        budget = BudgetService(session, user_id).get()
        if not budget:
            return None
        category = normalize_category(txn.category)
        limit = (budget.categories or {}).get(category)
        if not limit:
            return None

        window = current_month(self.now())
        spent = TransactionService(session, user_id).spent_in_category(category, window)
        alert = alert_for(category, spent, limit)
        if alert is None:
            return None
        profile = ProfileService(session, user_id).get()
        currency = profile.currency if profile else "INR"
        self._notify(session, user_id, category_alert_message(alert, currency))
        logger.info(
            f"transaction_check: user={user_id} category={category} "
            f"percentage={alert.percentage} severity={alert.severity.value}"
        )
        return alert


def build_jobs(settings: Optional[Settings] = None) -> BudgetJobs:
    settings = settings or get_settings()
    generator = GeminiTextGenerator(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout=settings.llm_timeout_secs,
    )
    return BudgetJobs(
        sessions=session_scope,
        advisor=SpendingAdvisor(generator),
        sender=build_push_sender(settings),
    )
