#!/usr/bin/env python3
"""
Seed the database with a demo organization.

Creates four companies, a standard set of departments in the Jakarta
company, an administrator, one holder of each approver role and a few
regular users.  Existing companies, departments and users (matched by
code / employee id) are left alone, so the script can be re-run.  With
--with-requests a handful of requests is pushed through the workflow.

Usage:
    python3 -m scripts.seed_data [--database-url URL] [--config PATH] [--reset] [--with-requests]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

from procurement_config import get_active_config  # noqa: E402
from procurement_config.bridges import build_workflow_settings  # noqa: E402

from procurement_kernel.db.engine import (  # noqa: E402
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.domain.dtos import ItemSpec  # noqa: E402
from procurement_kernel.domain.roles import Role  # noqa: E402
from procurement_kernel.models.organization import Company, Department, User  # noqa: E402
from procurement_kernel.selectors.identity_selector import IdentityContext  # noqa: E402
from procurement_kernel.services.organization_service import OrganizationService  # noqa: E402
from procurement_kernel.services.request_workflow import RequestWorkflowService  # noqa: E402

DEFAULT_DB_URL = "sqlite:///procurement.db"

COMPANIES = (
    ("AKM-JKT", "PT. Adijaya Karya Makmur - Jakarta"),
    ("AKM-SBY", "PT. Adijaya Karya Makmur - Surabaya"),
    ("AKM-BDG", "PT. Adijaya Karya Makmur - Bandung"),
    ("SCM-CTR", "Central SCM Division"),
)

DEPARTMENTS = (
    ("ENG", "Engineering"),
    ("SCM", "Supply Chain Management"),
    ("HR", "Human Resources"),
    ("FIN", "Finance"),
    ("OPS", "Operations"),
    ("QA", "Quality Assurance"),
    ("IT", "Information Technology"),
)

HOME_COMPANY = "AKM-JKT"
HOME_DEPARTMENT = "IT"

# (employee_id, name, email, roles)
USERS = (
    ("ADM001", "System Administrator", "admin@akm.example", (Role.ADMIN,)),
    ("AKM001", "IT Section Head", "section.head@akm.example", (Role.SECTION_HEAD,)),
    ("SCM001", "SCM Head", "scm.head@akm.example", (Role.SCM_HEAD,)),
    ("PJO001", "Project Officer", "pjo@akm.example", (Role.PJO,)),
    ("IT001", "IT Staff One", "it.staff1@akm.example", (Role.USER,)),
    ("IT002", "IT Crew Two", "it.crew2@akm.example", (Role.USER,)),
    ("IT003", "IT Crew Three", "it.crew3@akm.example", (Role.USER,)),
)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed a demo procurement organization")
    p.add_argument(
        "--database-url",
        default=os.environ.get("PROCUREMENT_DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: PROCUREMENT_DATABASE_URL or a local SQLite file)",
    )
    p.add_argument("--config", help="Workflow configuration file (default: packaged set)")
    p.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    p.add_argument(
        "--with-requests",
        action="store_true",
        help="Also create demo requests at several workflow stages",
    )
    return p.parse_args(argv)


def seed_organization(session) -> dict[str, User]:
    """Create the demo organization.  Returns users by employee id."""
    service = OrganizationService(session)

    companies: dict[str, Company] = {}
    for code, name in COMPANIES:
        company = session.execute(
            select(Company).where(Company.code == code)
        ).scalar_one_or_none()
        companies[code] = company or service.create_company(name, code)

    home = companies[HOME_COMPANY]
    departments: dict[str, Department] = {}
    for code, name in DEPARTMENTS:
        department = session.execute(
            select(Department).where(
                Department.company_id == home.id, Department.code == code,
            )
        ).scalar_one_or_none()
        departments[code] = department or service.create_department(home.id, name, code)

    users: dict[str, User] = {}
    for employee_id, name, email, roles in USERS:
        user = session.execute(
            select(User).where(User.employee_id == employee_id)
        ).scalar_one_or_none()
        users[employee_id] = user or service.create_user(
            employee_id=employee_id,
            name=name,
            email=email,
            company_id=home.id,
            department_id=departments[HOME_DEPARTMENT].id,
            roles=roles,
        )
    return users


def seed_requests(session, users: dict[str, User], workflow_settings=None) -> list[str]:
    """Create demo requests: one draft, one submitted, one fully approved."""
    identity = IdentityContext(session)
    workflow = RequestWorkflowService(session, **(workflow_settings or {}))
    requester = identity.principal_for(users["IT001"].id)
    approvers = [
        identity.principal_for(users[employee_id].id)
        for employee_id in ("AKM001", "SCM001", "PJO001")
    ]

    numbers = []
    draft = workflow.create_request(
        requester,
        items=[ItemSpec("Laptop docking station", 2, "unit")],
        notes="Replacement for the meeting room",
    )
    numbers.append(draft.request_number)

    submitted = workflow.create_request(
        requester,
        items=[
            ItemSpec("A4 paper", 20, "ream"),
            ItemSpec("Toner cartridge", 4, "pcs", specification="Black, high yield"),
        ],
    )
    workflow.submit(requester, submitted.id)
    numbers.append(submitted.request_number)

    completed = workflow.create_request(
        requester, items=[ItemSpec("Network switch", 1, "unit", specification="24 port")],
    )
    workflow.submit(requester, completed.id)
    for approver in approvers:
        workflow.approve(approver, completed.id, comments="OK")
    numbers.append(completed.request_number)
    return numbers


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    print()
    config = get_active_config(args.config)

    print("  [1/3] Connecting...")
    init_engine_from_url(
        args.database_url, busy_timeout_seconds=config.database.busy_timeout_seconds,
    )
    try:
        if args.reset:
            print("  [2/3] Dropping and recreating tables...")
            drop_tables()
        else:
            print("  [2/3] Ensuring tables exist...")
        create_tables()

        print("  [3/3] Seeding organization...")
        with session_scope() as session:
            users = seed_organization(session)
            numbers = (
                seed_requests(session, users, build_workflow_settings(config))
                if args.with_requests else []
            )
    finally:
        reset_engine()

    print()
    print(f"  Done. {len(COMPANIES)} companies, {len(DEPARTMENTS)} departments, {len(USERS)} users.")
    for number in numbers:
        print(f"  Request {number}")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
