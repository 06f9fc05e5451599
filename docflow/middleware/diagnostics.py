"""
Startup diagnostics — one summary banner when the app starts.

Reports the database, the workflow tables, and where the document store,
archival gateway and completion monitor point.  Problems are logged as
warnings; startup never aborts here.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect

from docflow.models import db

logger = logging.getLogger(__name__)

_WORKFLOW_TABLES = (
    "circuits", "statuses", "steps",
    "approvers", "approval_groups", "approval_group_members",
    "approval_requests", "approval_responses",
    "document_workflow_states", "document_status_completions", "workflow_history",
)


def _database_summary(app: Flask, issues: list[str]) -> tuple[str, str]:
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
    kind = "PostgreSQL" if uri.startswith("postgresql") else "SQLite" if uri.startswith("sqlite") else "unknown"
    try:
        db.session.execute(db.text("SELECT 1"))
        tables = set(sa_inspect(db.engine).get_table_names())
    except Exception as exc:
        issues.append(f"Database unreachable: {exc}")
        return f"{kind} (FAILED)", "?"
    missing = [t for t in _WORKFLOW_TABLES if t not in tables]
    if missing:
        issues.append(f"Missing workflow tables: {', '.join(missing)} (run 'flask db upgrade')")
    return f"{kind} (ok)", f"{len(_WORKFLOW_TABLES) - len(missing)}/{len(_WORKFLOW_TABLES)} workflow"


def run_startup_diagnostics(app: Flask):
    if app.config.get("TESTING"):
        return

    issues: list[str] = []
    with app.app_context():
        database, tables = _database_summary(app, issues)

    if app.config.get("COMPLETION_MONITOR_ENABLED"):
        monitor = (f"every {app.config.get('COMPLETION_MONITOR_POLL_INTERVAL')}s, "
                   f"{app.config.get('COMPLETION_MONITOR_MAX_ATTEMPTS')} polls")
    else:
        monitor = "disabled"

    rows = [
        ("Python", "{}.{}.{}".format(*sys.version_info[:3])),
        ("Debug", str(app.debug)),
        ("Database", database),
        ("Tables", tables),
        ("Doc store", app.config.get("DOCUMENT_STORE_URL") or "local"),
        ("Archival", app.config.get("ARCHIVAL_API_URL") or "via document store"),
        ("Monitor", monitor),
    ]
    width = 60
    lines = ["╔" + "═" * width + "╗",
             "║  " + "Document Workflow Circuit — Startup Diagnostics".ljust(width - 2) + "║",
             "╠" + "═" * width + "╣"]
    lines += ["║  " + f"{label:<11}: {value}"[:width - 2].ljust(width - 2) + "║"
              for label, value in rows]
    lines.append("╚" + "═" * width + "╝")
    logger.info("\n" + "\n".join(lines))

    if issues:
        logger.warning("Startup issues detected:")
        for issue in issues:
            logger.warning("  ⚠ %s", issue)
    else:
        logger.info("✅ All startup checks passed")
