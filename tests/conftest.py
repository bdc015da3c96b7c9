import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-unused.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_CREATE_TABLES", "false")
os.environ.pop("EXCHANGE_RATE_API_URL", None)

import itertools
import pytest
from typing import AsyncGenerator, List, Optional, Tuple
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import NullPool

import expenseflow.models  # noqa: F401
from expenseflow.models.base import Base
from expenseflow.models.auth.user import User
from expenseflow.models.expense.expense import Expense
from expenseflow.models.organization.company import Company
from expenseflow.models.shared.enums import ApproverType, RuleType, SequenceType, UserRole
from expenseflow.schemas.approval.approval_flow_schema import (
    ApprovalFlowCreate, ApprovalRuleCreate, ApprovalStepCreate
)
from expenseflow.schemas.expense.expense_schema import ExpenseCreate
from expenseflow.services.approval.approval_flow_service import ApprovalFlowService
from expenseflow.services.approval.approval_service import ApprovalService
from expenseflow.services.currency.currency_service import CurrencyConverter
from expenseflow.services.expense.expense_service import ExpenseService


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite file database per test"""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()

@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as s:
        yield s

@pytest.fixture
async def company(session) -> Company:
    acme = Company(name="Acme", country="United States", currency="USD")
    session.add(acme)
    await session.commit()
    return acme

@pytest.fixture
def make_user(session, company):
    """Factory: await make_user(UserRole.MANAGER, manager=some_user, ...)"""
    counter = itertools.count(1)

    async def _make(
        role: UserRole = UserRole.EMPLOYEE,
        manager: Optional[User] = None,
        is_manager_approver: bool = False,
        company_id: Optional[int] = None,
        name: Optional[str] = None
    ) -> User:
        n = next(counter)
        user = User(
            email=f"{role.value.lower()}{n}@acme-example.com",
            name=name or f"{role.value.title()} {n}",
            role=role,
            company_id=company_id or company.id,
            manager_id=manager.id if manager else None,
            is_manager_approver=is_manager_approver,
        )
        session.add(user)
        await session.commit()
        return user

    return _make

@pytest.fixture
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN, name="Alice Admin")

@pytest.fixture
def make_flow(session, company, admin):
    """Factory: await make_flow([(1, ApproverType.ROLE, "MANAGER"), ...], rules=[...])"""

    async def _make(
        steps: List[Tuple[int, ApproverType, str]],
        rules: Optional[List[Tuple[RuleType, dict]]] = None,
        sequence_type: SequenceType = SequenceType.SEQUENTIAL,
        min_approval_percentage: int = 100,
        can_escalate_in: Optional[int] = None,
        name: str = "Default flow"
    ):
        data = ApprovalFlowCreate(
            name=name,
            steps=[
                ApprovalStepCreate(
                    step_order=order,
                    approver_type=approver_type,
                    approver_ref=str(ref),
                    can_escalate_in=can_escalate_in
                )
                for order, approver_type, ref in steps
            ],
            rules=[ApprovalRuleCreate(rule_type=rule_type, params=params) for rule_type, params in (rules or [])],
            sequence_type=sequence_type,
            min_approval_percentage=min_approval_percentage
        )
        return await ApprovalFlowService(session).create_flow(company.id, data, admin.id)

    return _make

@pytest.fixture
def submit(session_maker):
    """Factory: await submit(employee, amount=..., currency=...), in its own session"""

    async def _submit(employee: User, amount: str = "250.00", currency: str = "USD", category: str = "Travel"):
        async with session_maker() as s:
            service = ExpenseService(s, converter=CurrencyConverter(base_url=None))
            return await service.submit_expense(
                ExpenseCreate(
                    amount=Decimal(amount),
                    currency=currency,
                    category=category,
                    description=f"{category} expense"
                ),
                employee
            )

    return _submit

@pytest.fixture
def decisions(session_maker):
    """Approval actions, each in a fresh session like one request would be"""

    class Decisions:
        async def approve(self, expense_id: int, user: User, comments: Optional[str] = None, step_id: Optional[int] = None):
            async with session_maker() as s:
                return await ApprovalService(s).approve_expense(expense_id, user, comments, step_id)

        async def reject(self, expense_id: int, user: User, comments: Optional[str] = None, step_id: Optional[int] = None):
            async with session_maker() as s:
                return await ApprovalService(s).reject_expense(expense_id, user, comments, step_id)

        async def escalate(self, expense_id: int, user: User, step_id: Optional[int] = None):
            async with session_maker() as s:
                return await ApprovalService(s).escalate_expense(expense_id, user, step_id)

    return Decisions()

@pytest.fixture
def load_expense(session_maker):
    """Factory: await load_expense(expense_id) -> Expense with approvals, read from a fresh session"""

    async def _load(expense_id: int) -> Expense:
        async with session_maker() as s:
            result = await s.execute(
                select(Expense)
                .options(selectinload(Expense.approvals))
                .where(Expense.id == expense_id)
            )
            return result.scalar_one()

    return _load
