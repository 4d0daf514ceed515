from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import text
import os

DATABASE_URL = os.getenv("SIGNAGE_DATABASE_URL", "sqlite:///./signage.db")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_sqlite_schema():
    """
    Lightweight runtime schema patching for SQLite.

    `Base.metadata.create_all()` won't add new columns to existing tables.
    This keeps local/dev installs working without requiring Alembic.
    """
    if not DATABASE_URL.startswith("sqlite"):
        return

    with engine.begin() as conn:
        screen_cols = conn.execute(text("PRAGMA table_info(screen)")).fetchall()
        screen_col_names = {row[1] for row in screen_cols}  # (cid, name, type, notnull, dflt_value, pk)
        if screen_cols:
            if "timezone" not in screen_col_names:
                conn.execute(text("ALTER TABLE screen ADD COLUMN timezone VARCHAR"))
            if "org_id" not in screen_col_names:
                conn.execute(text("ALTER TABLE screen ADD COLUMN org_id VARCHAR"))
            conn.execute(
                text("UPDATE screen SET timezone=NULL WHERE timezone IS NOT NULL AND trim(timezone)=''")
            )

        for table in ("screen", "screen_group"):
            cols = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
            col_names = {row[1] for row in cols}
            if not cols:
                continue
            if "urgent_starts_at" not in col_names:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN urgent_starts_at DATETIME"))
            if "urgent_expires_at" not in col_names:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN urgent_expires_at DATETIME"))

        item_cols = conn.execute(text("PRAGMA table_info(playlist_item)")).fetchall()
        item_col_names = {row[1] for row in item_cols}
        if item_cols and "predicate_json" not in item_col_names:
            conn.execute(text("ALTER TABLE playlist_item ADD COLUMN predicate_json VARCHAR"))

        rule_cols = conn.execute(text("PRAGMA table_info(schedule_rule)")).fetchall()
        rule_col_names = {row[1] for row in rule_cols}
        if rule_cols and "priority" not in rule_col_names:
            conn.execute(text("ALTER TABLE schedule_rule ADD COLUMN priority INTEGER DEFAULT 1"))
        if rule_cols:
            conn.execute(text("UPDATE schedule_rule SET priority=1 WHERE priority IS NULL"))
