from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from budgeting import (
    Alert,
    aggregate_by_category,
    build_alerts,
    classify,
    net_income,
    normalize_category,
    percentage_of,
)
from models import Budget, Category, Insight, InsightType, Transaction, TransactionType, User
from periods import Window, current_month
from schemas import (
    BudgetIn,
    BudgetPatch,
    CategoryProgress,
    BudgetProgressOut,
    ProfileIn,
    TransactionIn,
)


class ProfileService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[User]:
        return self.session.get(User, self.user_id)

    def get_or_create(self) -> User:
        user = self.get()
        if user:
            return user
        user = User(id=self.user_id)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def update(self, data: ProfileIn) -> User:
        user = self.get_or_create()
        user.display_name = data.display_name
        user.monthly_income = data.monthly_income
        user.currency = data.currency
        if data.fcm_token is not None:
            user.fcm_token = data.fcm_token or None
        self.session.commit()
        self.session.refresh(user)
        return user

    def device_token(self) -> Optional[str]:
        user = self.get()
        if not user:
            return None
        return user.fcm_token or None


def all_user_ids(session: Session) -> list[str]:
    return list(session.scalars(select(User.id).order_by(User.id)).all())


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        ProfileService(self.session, self.user_id).get_or_create()
        txn = Transaction(
            user_id=self.user_id,
            description=data.description.strip(),
            amount=data.amount,
            category=Category(normalize_category(data.category)),
            type=data.type,
            date=data.date.replace(tzinfo=None),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        txn.description = data.description.strip()
        txn.amount = data.amount
        txn.category = Category(normalize_category(data.category))
        txn.type = data.type
        txn.date = data.date.replace(tzinfo=None)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self,
        window: Optional[Window] = None,
        *,
        category: Optional[str] = None,
        txn_type: Optional[TransactionType] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if window is not None:
            stmt = stmt.where(
                Transaction.date >= window.start, Transaction.date < window.end
            )
        if category is not None:
            stmt = stmt.where(Transaction.category == Category(category))
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def spent_in_category(self, category: str, window: Window) -> float:
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0.0)).where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.category == Category(category),
                Transaction.date >= window.start,
                Transaction.date < window.end,
            )
        ).scalar_one()
        return float(total or 0.0)


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> Optional[Budget]:
        return self.session.scalar(select(Budget).where(Budget.user_id == self.user_id))

    def replace(self, data: BudgetIn) -> Budget:
        ProfileService(self.session, self.user_id).get_or_create()
        budget = self.get()
        if budget:
            budget.categories = dict(data.categories)
            budget.updated_at = datetime.utcnow()
        else:
            budget = Budget(user_id=self.user_id, categories=dict(data.categories))
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def merge(self, data: BudgetPatch) -> Budget:
        budget = self.get()
        if not budget:
            raise ValueError("Budget not found")
        merged = dict(budget.categories or {})
        for category, limit in data.categories.items():
            if limit is None:
                merged.pop(category, None)
            else:
                merged[category] = limit
        # reassign so the JSON column is flagged dirty
        budget.categories = merged
        budget.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self) -> None:
        budget = self.get()
        if not budget:
            raise ValueError("Budget not found")
        self.session.delete(budget)
        self.session.commit()

    def _month_spending(self, window: Window) -> dict[str, float]:
        transactions = TransactionService(self.session, self.user_id).list(
            window, txn_type=TransactionType.expense
        )
        # oldest first so sums accumulate in recording order
        return aggregate_by_category(reversed(transactions), window)

    def alerts(self, now: Optional[datetime] = None) -> list[Alert]:
        budget = self.get()
        if not budget:
            return []
        window = current_month(now)
        return build_alerts(self._month_spending(window), budget.categories or {})

    def progress(self, now: Optional[datetime] = None) -> BudgetProgressOut:
        budget = self.get()
        if not budget:
            raise ValueError("Budget not found")
        window = current_month(now)
        transactions = TransactionService(self.session, self.user_id).list(window)
        ordered = list(reversed(transactions))
        spending = aggregate_by_category(ordered, window)

        rows: list[CategoryProgress] = []
        for category, limit in (budget.categories or {}).items():
            spent = spending.get(category, 0.0)
            severity = classify(spent, limit)
            if not limit:
                status = "untracked"
            elif severity is None:
                status = "ok"
            else:
                status = severity.value
            rows.append(
                CategoryProgress(
                    category=category,
                    spent=spent,
                    budget=float(limit or 0.0),
                    remaining=float(limit or 0.0) - spent,
                    percentage=percentage_of(spent, limit),
                    status=status,
                )
            )
        return BudgetProgressOut(
            window_start=window.start,
            window_end=window.end,
            total_spent=sum(spending.values()),
            total_budget=float(sum((budget.categories or {}).values())),
            net_income=net_income(ordered, window),
            categories=rows,
        )


class InsightService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def add(
        self,
        insight_type: InsightType,
        *,
        summary: str,
        total_spent: float,
        transaction_count: int,
        top_categories: list[str],
        concerns: Optional[list[str]] = None,
        recommendation: Optional[str] = None,
    ) -> Insight:
        insight = Insight(
            user_id=self.user_id,
            type=insight_type,
            summary=summary,
            total_spent=total_spent,
            transaction_count=transaction_count,
            top_categories=list(top_categories),
            concerns=list(concerns or []),
            recommendation=recommendation,
        )
        self.session.add(insight)
        self.session.commit()
        self.session.refresh(insight)
        return insight

    def recent(self, limit: int = 10) -> list[Insight]:
        stmt = (
            select(Insight)
            .where(Insight.user_id == self.user_id)
            .order_by(Insight.created_at.desc(), Insight.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())
