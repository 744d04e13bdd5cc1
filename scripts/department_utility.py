#!/usr/bin/env python3
"""
Department administration utility.

Lists departments, creates them, assigns section heads, reports
departments without a head and requests stalled without an approver,
prints organization statistics and removes empty departments.

Usage:
  python3 -m scripts.department_utility list [--company CODE]
  python3 -m scripts.department_utility create --company CODE --name NAME --code CODE
  python3 -m scripts.department_utility assign-section-head --department ID --user ID [--yes]
  python3 -m scripts.department_utility check-missing-heads [--company CODE] [--auto-assign]
  python3 -m scripts.department_utility check-stuck
  python3 -m scripts.department_utility stats
  python3 -m scripts.department_utility cleanup [--company CODE] [--yes]

--department accepts a department id, or a department code together with
--company.  --user accepts a user id or an employee id.  The database is
--database-url, else PROCUREMENT_DATABASE_URL, else a local SQLite file.
check-stuck reads approval chains from --config (default: the packaged
configuration set).

Exit codes: 0 success, 1 error, 2 problems found (missing heads or stuck
requests).
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from uuid import UUID, uuid4

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

from procurement_config import get_active_config  # noqa: E402
from procurement_config.bridges import build_chain_policy  # noqa: E402

from procurement_kernel.db.engine import (  # noqa: E402
    create_tables,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.exceptions import (  # noqa: E402
    DepartmentNotFoundError,
    ProcurementKernelError,
    StuckWorkflowError,
    UserNotFoundError,
)
from procurement_kernel.logging_config import LogContext, get_logger  # noqa: E402
from procurement_kernel.models.organization import Department, User  # noqa: E402
from procurement_kernel.selectors.organization_selector import OrganizationSelector  # noqa: E402
from procurement_kernel.selectors.request_selector import RequestSelector  # noqa: E402
from procurement_kernel.services.organization_service import OrganizationService  # noqa: E402

logger = get_logger("scripts.department_utility")

DEFAULT_DB_URL = "sqlite:///procurement.db"
ACTIONS = (
    "list",
    "create",
    "assign-section-head",
    "check-missing-heads",
    "check-stuck",
    "stats",
    "cleanup",
)
W = 96

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PROBLEMS = 2


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Department administration utility")
    p.add_argument("action", choices=ACTIONS, help="Action to perform")
    p.add_argument("--company", help="Company code")
    p.add_argument("--department", help="Department id, or code together with --company")
    p.add_argument("--user", help="User id or employee id")
    p.add_argument("--name", help="Department name (create)")
    p.add_argument("--code", help="Department code (create)")
    p.add_argument(
        "--auto-assign",
        action="store_true",
        help="check-missing-heads: assign where exactly one candidate exists",
    )
    p.add_argument("--config", help="Workflow configuration file (default: packaged set)")
    p.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    p.add_argument(
        "--database-url",
        default=os.environ.get("PROCUREMENT_DATABASE_URL", DEFAULT_DB_URL),
        help="Database URL (default: PROCUREMENT_DATABASE_URL or a local SQLite file)",
    )
    return p.parse_args(argv)


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"  {prompt} [y/N]: ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer in ("y", "yes")


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None


def _resolve_department(session, ref: str, company_code: str | None) -> Department:
    selector = OrganizationSelector(session)
    department_id = _as_uuid(ref)
    if department_id is not None:
        return selector.get_department(department_id)
    if company_code is None:
        raise DepartmentNotFoundError(f"{ref} (a department code needs --company)")
    company = selector.get_company_by_code(company_code)
    department = session.execute(
        select(Department).where(
            Department.company_id == company.id,
            Department.code == ref.strip().upper(),
        )
    ).scalar_one_or_none()
    if department is None:
        raise DepartmentNotFoundError(f"{company.code}/{ref}")
    return department


def _resolve_user(session, ref: str) -> User:
    user_id = _as_uuid(ref)
    if user_id is not None:
        user = session.get(User, user_id)
    else:
        user = session.execute(
            select(User).where(User.employee_id == ref)
        ).scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(ref)
    return user


def _print_departments(departments) -> None:
    print(
        f"  {'ID':<36}  {'Company':<10} {'Code':<8} {'Name':<20} "
        f"{'Users':>5} {'Active':>6}  Section head"
    )
    print("  " + "-" * (W - 2))
    for d in departments:
        heads = ", ".join(d.section_head_names) or "Not assigned"
        print(
            f"  {str(d.id):<36}  {d.company_code:<10} {d.code:<8} {d.name[:20]:<20} "
            f"{d.user_count:>5} {d.active_request_count:>6}  {heads}"
        )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def cmd_list(session, args) -> int:
    departments = OrganizationSelector(session).list_departments(args.company)
    if not departments:
        print("  No departments found.")
        return EXIT_OK
    _print_departments(departments)
    print()
    print(f"  {len(departments)} department(s).")
    return EXIT_OK


def cmd_create(session, args) -> int:
    if not (args.company and args.name and args.code):
        print("  ERROR: create needs --company, --name and --code.", file=sys.stderr)
        return EXIT_ERROR
    company = OrganizationSelector(session).get_company_by_code(args.company)
    department = OrganizationService(session).create_department(
        company.id, args.name, args.code,
    )
    print(f"  Created department {company.code}/{department.code} ({department.id}).")
    return EXIT_OK


def cmd_assign_section_head(session, args) -> int:
    if not (args.department and args.user):
        print("  ERROR: assign-section-head needs --department and --user.", file=sys.stderr)
        return EXIT_ERROR
    department = _resolve_department(session, args.department, args.company)
    user = _resolve_user(session, args.user)
    current = [
        head for head in OrganizationSelector(session).section_heads(department.id)
        if head.id != user.id
    ]
    if current:
        names = ", ".join(head.name for head in current)
        print(f"  Department {department.code} is currently headed by {names}.")
        if not _confirm(f"Replace with {user.name}?", args.yes):
            print("  Cancelled.")
            return EXIT_OK

    OrganizationService(session).assign_section_head(department.id, user.id)
    print(f"  {user.name} ({user.employee_id}) is now section head of {department.code}.")
    return EXIT_OK


def cmd_check_missing_heads(session, args) -> int:
    selector = OrganizationSelector(session)
    if args.auto_assign:
        assigned = OrganizationService(session).auto_assign_section_heads(args.company)
        for summary, user in assigned:
            print(f"  Assigned {user.name} ({user.employee_id}) to {summary.company_code}/{summary.code}.")
        if assigned:
            print()

    missing = selector.departments_without_section_head(args.company)
    if not missing:
        print("  Every department has a section head.")
        return EXIT_OK

    print(f"  {len(missing)} department(s) without a section head:")
    print()
    for d in missing:
        candidates = selector.section_head_candidates(d.id)
        names = ", ".join(f"{u.name} ({u.employee_id})" for u in candidates) or "none"
        print(f"  {d.company_code}/{d.code:<8} {d.name[:24]:<24} candidates: {names}")
    return EXIT_PROBLEMS


def cmd_check_stuck(session, args) -> int:
    policy = build_chain_policy(get_active_config(args.config))
    stuck = RequestSelector(session, policy).stuck_workflows()
    if not stuck:
        print("  No stalled requests.")
        return EXIT_OK
    error = StuckWorkflowError([s.request_number for s in stuck])
    logger.error(
        "stuck_workflows_detected",
        extra={"code": error.code, "request_numbers": error.request_numbers},
    )
    print(f"  {error}")
    print()
    for s in stuck:
        print(f"  {s.request_number:<28} {s.status.value:<18} waiting on {s.waiting_on.value}")
    return EXIT_PROBLEMS


def cmd_stats(session, args) -> int:
    stats = OrganizationSelector(session).statistics()
    print("=" * W)
    print("  DEPARTMENT STATISTICS".center(W))
    print("=" * W)
    print(f"  Total departments:              {stats.total_departments}")
    print(
        f"  With section head:              {stats.with_section_head} "
        f"({stats.percentage(stats.with_section_head)}%)"
    )
    print(
        f"  Without section head:           {stats.without_section_head} "
        f"({stats.percentage(stats.without_section_head)}%)"
    )
    print(f"  With active requests:           {stats.departments_with_active_requests}")
    print()
    print(f"  {'Company':<12} {'Departments':>11} {'Users':>7} {'Avg users/dept':>15}")
    print("  " + "-" * 48)
    for c in stats.companies:
        print(
            f"  {c.code:<12} {c.department_count:>11} {c.user_count:>7} "
            f"{c.average_users_per_department:>15}"
        )
    return EXIT_OK


def cmd_cleanup(session, args) -> int:
    service = OrganizationService(session)
    empty = service.cleanup_empty_departments(args.company, dry_run=True)
    if not empty:
        print("  No empty departments.")
        return EXIT_OK
    print(f"  {len(empty)} department(s) with no users and no requests:")
    for d in empty:
        print(f"  {d.company_code}/{d.code:<8} {d.name}")
    if not _confirm("Delete them?", args.yes):
        print("  Cancelled.")
        return EXIT_OK
    removed = service.cleanup_empty_departments(args.company)
    print(f"  Deleted {len(removed)} department(s).")
    return EXIT_OK


HANDLERS = {
    "list": cmd_list,
    "create": cmd_create,
    "assign-section-head": cmd_assign_section_head,
    "check-missing-heads": cmd_check_missing_heads,
    "check-stuck": cmd_check_stuck,
    "stats": cmd_stats,
    "cleanup": cmd_cleanup,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    init_engine_from_url(args.database_url)
    try:
        with LogContext.bind(correlation_id=uuid4().hex):
            create_tables()
            try:
                with session_scope() as session:
                    return HANDLERS[args.action](session, args)
            except ProcurementKernelError as exc:
                logger.warning("cli_action_failed", exc_info=True, extra={"action": args.action})
                print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
                return EXIT_ERROR
    finally:
        reset_engine()


if __name__ == "__main__":
    sys.exit(main())
