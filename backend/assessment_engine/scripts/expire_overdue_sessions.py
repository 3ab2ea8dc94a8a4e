"""
Expire every in-progress session whose deadline has passed.

Reads already expire overdue sessions lazily; run this from a scheduler so
abandoned sessions are finalized and counted even if nobody opens them again.

Usage (from backend/ with DATABASE_URL set):
  python -m assessment_engine.scripts.expire_overdue_sessions
"""
from __future__ import annotations

from assessment_engine.domains.integrations.adapters import build_session_orchestrator
from assessment_engine.platform.database import SessionLocal
from assessment_engine.platform.logging import setup_logging


def main() -> None:
    setup_logging()
    orchestrator = build_session_orchestrator()
    db = SessionLocal()
    try:
        expired = orchestrator.expire_overdue_sessions(db)
        print(f"Expired {expired} overdue session(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
