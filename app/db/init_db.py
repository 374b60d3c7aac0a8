"""Database initialization with auto-migration and catalog verification."""
import logging
from typing import List, Tuple
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError
from app.db.database import engine, queue_engine, SessionLocal, Base, QueueBase
from app.db import models, queue_models  # noqa: F401  (register tables)
from app.services.catalog import CatalogError, load_default_catalog, validate_catalog

logger = logging.getLogger(__name__)

# Columns added to users after the first release: (name, DDL)
USER_COLUMN_MIGRATIONS: List[Tuple[str, str]] = [
    ("version", "INTEGER NOT NULL DEFAULT 0"),
    ("pulls_since_rare", "INTEGER NOT NULL DEFAULT 0"),
    ("failed_quizzes", "INTEGER NOT NULL DEFAULT 0"),
    ("debate_win_streak", "INTEGER NOT NULL DEFAULT 0"),
    ("difficulty_multiplier", "FLOAT NOT NULL DEFAULT 1.0"),
]

# Columns added to offline_queue after the first release: (name, DDL)
QUEUE_COLUMN_MIGRATIONS: List[Tuple[str, str]] = [
    ("immediate", "BOOLEAN NOT NULL DEFAULT 1"),
]

INDEX_MIGRATIONS: List[Tuple[str, str, str]] = [
    ("owned_collectibles", "idx_collection_rarity",
     "CREATE INDEX IF NOT EXISTS idx_collection_rarity ON owned_collectibles (user_id, rarity)"),
    ("pull_history", "idx_pull_history_user",
     "CREATE INDEX IF NOT EXISTS idx_pull_history_user ON pull_history (user_id, pulled_at)"),
    ("quiz_results", "idx_quiz_results_user",
     "CREATE INDEX IF NOT EXISTS idx_quiz_results_user ON quiz_results (user_id, completed_at)"),
]


def check_column_exists(inspector, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    try:
        columns = [col['name'] for col in inspector.get_columns(table_name)]
        return column_name in columns
    except Exception as e:
        logger.warning(f"Error checking column {column_name} in {table_name}: {e}")
        return False


def check_index_exists(inspector, table_name: str, index_name: str) -> bool:
    """Check if an index exists on a table."""
    try:
        indexes = inspector.get_indexes(table_name)
        return any(idx['name'] == index_name for idx in indexes)
    except Exception as e:
        logger.warning(f"Error checking index {index_name} in {table_name}: {e}")
        return False


def apply_schema_migrations(db: Session, bind: Engine = engine) -> List[str]:
    """
    Apply schema migrations automatically on startup.

    Adds columns introduced after a record store was first created and the
    indexes the read paths rely on. All operations are idempotent.

    Returns:
        Descriptions of the migrations applied
    """
    inspector = inspect(bind)
    existing_tables = inspector.get_table_names()

    if not existing_tables:
        logger.info("No existing tables found. Schema will be created from scratch.")
        return []

    logger.info("Checking for necessary schema migrations...")
    migrations_applied = []

    if 'users' in existing_tables:
        for col_name, col_def in USER_COLUMN_MIGRATIONS:
            if not check_column_exists(inspector, 'users', col_name):
                try:
                    logger.info(f"Adding column {col_name} to users table...")
                    db.execute(text(f"ALTER TABLE users ADD COLUMN {col_name} {col_def}"))
                    migrations_applied.append(f"Added column users.{col_name}")
                except OperationalError as e:
                    logger.warning(f"Could not add column {col_name}: {e}")

    for table_name, idx_name, sql in INDEX_MIGRATIONS:
        if table_name in existing_tables and not check_index_exists(inspector, table_name, idx_name):
            try:
                logger.info(f"Creating index {idx_name}...")
                db.execute(text(sql))
                migrations_applied.append(f"Created index {idx_name}")
            except OperationalError as e:
                logger.warning(f"Could not create index {idx_name}: {e}")

    if migrations_applied:
        try:
            db.commit()
            logger.info(f"Applied {len(migrations_applied)} schema migrations:")
            for migration in migrations_applied:
                logger.info(f"  - {migration}")
        except Exception as e:
            db.rollback()
            logger.error(f"Error committing migrations: {e}")
            raise
    else:
        logger.info("No schema migrations needed. Database is up to date.")

    return migrations_applied


def apply_queue_migrations(bind: Engine = queue_engine) -> List[str]:
    """Add columns missing from an offline queue created by an older release."""
    inspector = inspect(bind)
    if "offline_queue" not in inspector.get_table_names():
        return []

    applied = []
    with bind.begin() as conn:
        for col_name, col_def in QUEUE_COLUMN_MIGRATIONS:
            if not check_column_exists(inspector, "offline_queue", col_name):
                conn.execute(text(f"ALTER TABLE offline_queue ADD COLUMN {col_name} {col_def}"))
                applied.append(f"Added column offline_queue.{col_name}")
    for migration in applied:
        logger.info(f"  - {migration}")
    return applied


def verify_catalog() -> None:
    """
    Fail startup on unusable content.

    Raises:
        CatalogError: If the bundled catalog has problems
    """
    problems = validate_catalog(load_default_catalog())
    if problems:
        for problem in problems:
            logger.error(f"Catalog problem: {problem}")
        raise CatalogError(f"{len(problems)} catalog problem(s) found")
    logger.info("Content catalog verified.")


def init_db() -> None:
    """
    Initialize databases: create tables, apply migrations, verify content.

    Safe to call multiple times - all operations are idempotent.
    """
    logger.info("Initializing database...")

    # Migrations first so create_all never sees a half-upgraded table
    db = SessionLocal()
    try:
        apply_schema_migrations(db)
    finally:
        db.close()

    logger.info("Creating database tables from models...")
    Base.metadata.create_all(bind=engine)
    apply_queue_migrations()
    QueueBase.metadata.create_all(bind=queue_engine)
    logger.info("Tables created/verified successfully.")

    verify_catalog()
    logger.info("Database initialization complete.")


if __name__ == "__main__":
    # Set up basic logging for standalone execution
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    init_db()
    print("Database initialization complete.")
