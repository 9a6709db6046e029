"""
Pytest fixtures for the expense workflow test suite.

Provides:
- Database sessions isolated per test (outer transaction + savepoints)
- An orchestrator bound to the same isolated connection
- Factory fixtures for companies, users, expenses and workflows
- Log capture as parsed JSON records

Environment Variables:
- DATABASE_URL: run the suite against this database (e.g. PostgreSQL).
  If not set, a temporary SQLite file is used.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from expense_kernel.db.base import Base
from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from expense_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from expense_kernel.domain.clock import DeterministicClock
from expense_kernel.domain.workflow import workflow_config_to_dict, parse_workflow_config
from expense_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from expense_kernel.models import ApprovalWorkflow, Company, Expense, User
from expense_kernel.services.approval_workflow_service import ApprovalWorkflowService
from expense_kernel.services.auditor_service import AuditorService
from expense_services.workflow_orchestrator import ExpenseWorkflowOrchestrator


def pytest_configure(config):
    config.addinivalue_line("markers", "slow_locks: threads contend for real database locks")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture expense_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.submit_expense(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("expense_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def _database_url(tmp_path_factory) -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    db_file = tmp_path_factory.mktemp("db") / "expense_workflow_test.db"
    return f"sqlite:///{db_file}"


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the whole test session."""
    eng = init_engine_from_url(
        _database_url(tmp_path_factory),
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture
def connection(db_tables, db_engine):
    """A connection holding an outer transaction rolled back at teardown."""
    conn = db_engine.connect()
    trans = conn.begin()
    yield conn
    try:
        trans.rollback()
    finally:
        conn.close()


@pytest.fixture
def session(connection) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins the outer transaction; ``session.commit()`` inside a
    test only releases a savepoint, and everything is undone at teardown.
    """
    sess = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    yield sess
    sess.close()


@pytest.fixture
def session_factory(connection):
    """Sessions sharing the isolated connection, for the orchestrator."""

    def _factory() -> Session:
        return Session(
            bind=connection,
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        )

    return _factory


def _delete_all_rows(engine) -> None:
    # Core deletes skip the ORM immutability listeners
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


@pytest.fixture
def committing_session_factory(db_engine, db_tables):
    """Real commits on separate connections; all rows deleted at teardown.

    Tests using this fixture must not also use ``session``: on SQLite the
    open outer transaction would block the committing connections.
    """
    factory = get_session_factory()
    created: list[Session] = []

    def _factory() -> Session:
        sess = factory()
        created.append(sess)
        return sess

    yield _factory

    for sess in created:
        sess.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Clock and services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def auditor_service(session, deterministic_clock) -> AuditorService:
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def workflow_service(session, deterministic_clock, auditor_service) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(session, auditor=auditor_service, clock=deterministic_clock)


@pytest.fixture
def orchestrator(session_factory, deterministic_clock) -> ExpenseWorkflowOrchestrator:
    return ExpenseWorkflowOrchestrator(session_factory, clock=deterministic_clock)


# =============================================================================
# Factories
# =============================================================================


def make_company(session: Session, name: str = "Acme", currency: str = "USD") -> Company:
    company = Company(name=name, currency=currency)
    session.add(company)
    session.flush()
    return company


def make_user(
    session: Session,
    clock: DeterministicClock,
    company: Company,
    role: str = "employee",
    manager: User | None = None,
    is_active: bool = True,
    name: str | None = None,
) -> User:
    label = name or f"{role}-{uuid4().hex[:8]}"
    user = User(
        company_id=company.id,
        email=f"{label}@example.com",
        full_name=label,
        role=role,
        manager_id=manager.id if manager is not None else None,
        is_active=is_active,
        created_at=clock.tick(),
    )
    session.add(user)
    session.flush()
    return user


def make_expense(
    session: Session,
    submitter: User,
    amount: str | Decimal = "100.00",
    currency: str = "USD",
    amount_in_company_currency: str | Decimal | None = None,
    exchange_rate: str | Decimal | None = None,
    category: str | None = "travel",
) -> Expense:
    expense = Expense(
        company_id=submitter.company_id,
        submitter_id=submitter.id,
        amount=Decimal(str(amount)),
        currency=currency,
        amount_in_company_currency=(
            Decimal(str(amount_in_company_currency))
            if amount_in_company_currency is not None else None
        ),
        exchange_rate=Decimal(str(exchange_rate)) if exchange_rate is not None else None,
        category=category,
        description="Client visit",
    )
    session.add(expense)
    session.flush()
    return expense


def make_workflow(
    session: Session,
    clock: DeterministicClock,
    company: Company,
    configuration: dict,
    priority: int = 0,
    is_active: bool = True,
    name: str = "Default workflow",
) -> ApprovalWorkflow:
    normalized = workflow_config_to_dict(parse_workflow_config(configuration))
    workflow = ApprovalWorkflow(
        company_id=company.id,
        name=name,
        workflow_type=normalized.get("workflow_type"),
        configuration=normalized,
        priority=priority,
        is_active=is_active,
        created_at=clock.tick(),
    )
    session.add(workflow)
    session.flush()
    return workflow


@pytest.fixture
def create_company(session):
    def _create(name: str = "Acme", currency: str = "USD") -> Company:
        return make_company(session, name=name, currency=currency)

    return _create


@pytest.fixture
def create_user(session, deterministic_clock):
    def _create(company: Company, role: str = "employee", **kwargs) -> User:
        return make_user(session, deterministic_clock, company, role=role, **kwargs)

    return _create


@pytest.fixture
def create_expense(session):
    def _create(submitter: User, amount="100.00", **kwargs) -> Expense:
        return make_expense(session, submitter, amount=amount, **kwargs)

    return _create


@pytest.fixture
def create_workflow(session, deterministic_clock):
    def _create(company: Company, configuration: dict, **kwargs) -> ApprovalWorkflow:
        return make_workflow(session, deterministic_clock, company, configuration, **kwargs)

    return _create


@pytest.fixture
def company(create_company) -> Company:
    return create_company()


@pytest.fixture
def org(company, create_user):
    """A small org chart: admin, a manager with two reports, a second manager."""

    admin = create_user(company, role="admin", name="admin")
    manager = create_user(company, role="manager", name="manager")
    employee = create_user(company, manager=manager, name="employee")
    colleague = create_user(company, manager=manager, name="colleague")
    other_manager = create_user(company, role="manager", name="other-manager")
    return SimpleNamespace(
        company=company,
        admin=admin,
        manager=manager,
        employee=employee,
        colleague=colleague,
        other_manager=other_manager,
    )


@pytest.fixture
def committed_org(committing_session_factory, deterministic_clock):
    """The ``org`` chart plus a manager-only workflow, committed for real.

    ``add_expense(submitter, amount)`` commits a draft expense and returns it.
    """
    sess = committing_session_factory()
    company = make_company(sess)
    admin = make_user(sess, deterministic_clock, company, role="admin", name="admin")
    manager = make_user(sess, deterministic_clock, company, role="manager", name="manager")
    employee = make_user(sess, deterministic_clock, company, manager=manager, name="employee")
    colleague = make_user(sess, deterministic_clock, company, manager=manager, name="colleague")
    make_workflow(sess, deterministic_clock, company, {
        "workflow_type": "sequential",
        "approval_levels": [{"level": 1, "approver_type": "manager"}],
    })
    sess.commit()

    def add_expense(submitter: User, amount: str = "100.00") -> Expense:
        expense_session = committing_session_factory()
        expense = make_expense(expense_session, submitter, amount=amount)
        expense_session.commit()
        return expense

    return SimpleNamespace(
        company=company,
        admin=admin,
        manager=manager,
        employee=employee,
        colleague=colleague,
        add_expense=add_expense,
    )


@pytest.fixture
def two_level_config() -> dict:
    """Manager, then the first admin."""
    return {
        "enabled": True,
        "workflow_type": "sequential",
        "approval_levels": [
            {"level": 1, "approver_type": "manager"},
            {"level": 2, "approver_type": "role", "role": "admin"},
        ],
    }


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()
