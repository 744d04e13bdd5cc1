"""
Pytest fixtures for the procurement kernel test suite.

Provides:
- A fresh database per test: a SQLite file under tmp_path, or the
  database named by DATABASE_URL (PostgreSQL) when set
- A session that is rolled back at teardown
- A deterministic clock
- A standard organization (companies, departments, users, principals)
- Captured structured logs

Environment Variables:
- DATABASE_URL: optional PostgreSQL connection URL.  Tables are dropped
  and recreated for every test.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.domain.dtos import ItemSpec
from procurement_kernel.domain.roles import Principal, Role
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procurement_kernel.models.organization import Company, Department, User
from procurement_kernel.selectors.identity_selector import IdentityContext
from procurement_kernel.selectors.request_selector import RequestSelector
from procurement_kernel.services.organization_service import OrganizationService
from procurement_kernel.services.request_workflow import RequestWorkflowService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def pytest_collection_modifyitems(config, items):
    if os.environ.get("DATABASE_URL", "").startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
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
    Capture procurement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "request_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procurement_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'procurement_test.db'}"


@pytest.fixture
def db_engine(database_url):
    """Engine with an empty schema, disposed at teardown."""
    eng = init_engine_from_url(
        database_url,
        echo=False,
        pool_size=30,
        max_overflow=20,
        pool_timeout=10,
        busy_timeout_seconds=30.0,
    )
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """
    A session for one test.  Services flush into it; nothing is committed,
    and everything is rolled back at teardown.

    On SQLite this session holds the database write lock from its first
    statement on.  Tests that use several threads must seed through
    ``session_scope()`` (see ``committed_org``) instead.
    """
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


# =============================================================================
# Organization
# =============================================================================


@dataclass
class OrgFixture:
    """
    The standard test organization.

    ACME (ENG, OPS) and GLOBEX (ENG).  Users by key:

    ===================  ========  =====  ==============
    key                  company   dept   roles
    ===================  ========  =====  ==============
    requester            ACME      ENG    user
    colleague            ACME      ENG    user
    ops_user             ACME      OPS    user
    section_head         ACME      ENG    section_head
    ops_section_head     ACME      OPS    section_head
    scm_head             ACME      --     scm_head
    scm_head_2           GLOBEX    --     scm_head
    pjo                  ACME      --     pjo
    pjo_2                ACME      --     pjo
    admin                ACME      --     admin
    globex_user          GLOBEX    ENG    user
    globex_section_head  GLOBEX    ENG    section_head
    globex_pjo           GLOBEX    --     pjo
    ===================  ========  =====  ==============
    """

    session: Session
    companies: dict[str, Company] = field(default_factory=dict)
    departments: dict[str, Department] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)

    def principal(self, key: str) -> Principal:
        return IdentityContext(self.session).principal_for(self.users[key].id)

    def __getattr__(self, key: str) -> Principal:
        users = self.__dict__.get("users", {})
        if key in users:
            return self.principal(key)
        raise AttributeError(key)


_USERS = (
    # key, employee_id, company, department, roles
    ("requester", "EMP001", "ACME", "ACME/ENG", (Role.USER,)),
    ("colleague", "EMP002", "ACME", "ACME/ENG", (Role.USER,)),
    ("ops_user", "EMP003", "ACME", "ACME/OPS", (Role.USER,)),
    ("section_head", "SH001", "ACME", "ACME/ENG", (Role.SECTION_HEAD,)),
    ("ops_section_head", "SH002", "ACME", "ACME/OPS", (Role.SECTION_HEAD,)),
    ("scm_head", "SCM001", "ACME", None, (Role.SCM_HEAD,)),
    ("scm_head_2", "SCM002", "GLOBEX", None, (Role.SCM_HEAD,)),
    ("pjo", "PJO001", "ACME", None, (Role.PJO,)),
    ("pjo_2", "PJO002", "ACME", None, (Role.PJO,)),
    ("admin", "ADM001", "ACME", None, (Role.ADMIN,)),
    ("globex_user", "GLX001", "GLOBEX", "GLOBEX/ENG", (Role.USER,)),
    ("globex_section_head", "GLX002", "GLOBEX", "GLOBEX/ENG", (Role.SECTION_HEAD,)),
    ("globex_pjo", "GLX003", "GLOBEX", None, (Role.PJO,)),
)


def build_org(session: Session) -> OrgFixture:
    service = OrganizationService(session)
    org = OrgFixture(session=session)
    org.companies["ACME"] = service.create_company("Acme Corp", "ACME")
    org.companies["GLOBEX"] = service.create_company("Globex Ltd", "GLOBEX")
    for key, company, code, name in (
        ("ACME/ENG", "ACME", "ENG", "Engineering"),
        ("ACME/OPS", "ACME", "OPS", "Operations"),
        ("GLOBEX/ENG", "GLOBEX", "ENG", "Engineering"),
    ):
        org.departments[key] = service.create_department(
            org.companies[company].id, name, code,
        )
    for key, employee_id, company, department, roles in _USERS:
        org.users[key] = service.create_user(
            employee_id=employee_id,
            name=key.replace("_", " ").title(),
            company_id=org.companies[company].id,
            department_id=org.departments[department].id if department else None,
            roles=roles,
        )
    return org


@pytest.fixture
def org(session) -> OrgFixture:
    return build_org(session)


@pytest.fixture
def committed_org(db_engine) -> OrgFixture:
    """
    The standard organization, committed, for multi-session tests.

    The returned fixture's session is closed; use ``principals`` computed
    here rather than calling ``principal()`` later.
    """
    with session_scope() as s:
        org = build_org(s)
        org.principals = {key: org.principal(key) for key in org.users}
    return org


# =============================================================================
# Workflow helpers
# =============================================================================


@pytest.fixture
def workflow(session, deterministic_clock) -> RequestWorkflowService:
    return RequestWorkflowService(session, clock=deterministic_clock)


@pytest.fixture
def selector(session) -> RequestSelector:
    return RequestSelector(session)


@pytest.fixture
def items() -> list[ItemSpec]:
    return [
        ItemSpec("A4 paper", 10, "ream"),
        ItemSpec("Stapler", 2, "pcs", specification="Heavy duty"),
    ]


@pytest.fixture
def draft(workflow, org, items):
    """A draft request owned by ``org.requester`` with two items."""
    return workflow.create_request(org.requester, items=items, notes="Office supplies")


@pytest.fixture
def submitted(workflow, org, draft):
    return workflow.submit(org.requester, draft.id)
