"""
Database engine initialisation.
"""

import sys

from sqlalchemy import create_engine, text

from medportal.config import get_env


def init_engine():
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine
