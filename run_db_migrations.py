#!/usr/bin/env python3
"""
Database migration script: waits for the database, then upgrades to head
"""

import atexit
import logging
import os
import sys
import time

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def cleanup():
    logger.info("Script is exiting...")
    sys.stdout.flush()
    sys.stderr.flush()


atexit.register(cleanup)


def wait_for_database(app, max_retries=30, delay=2):
    """Wait for database to be ready"""
    logger.info("Waiting for database to be ready...")

    from sqlalchemy import text
    from sqlalchemy.exc import OperationalError

    from hpapi import db

    for attempt in range(1, max_retries + 1):
        try:
            with app.app_context(), db.engine.connect() as connection:
                connection.execute(text("SELECT 1")).fetchone()

            logger.info("Database is ready!")
            return True

        except OperationalError as e:
            logger.info(f"Database not ready (attempt {attempt}/{max_retries}): {e}")
            time.sleep(delay)

    raise RuntimeError("Database did not become ready within timeout period")


def run_migrations():
    """Run database migrations"""
    print("Running database migrations...")
    logger.info("Migration script started")

    try:
        from alembic.runtime.migration import MigrationContext
        from alembic.script import ScriptDirectory
        from flask_migrate import upgrade

        from hpapi import app, db, migrate

        wait_for_database(app)

        with app.app_context():
            script = ScriptDirectory.from_config(migrate.get_config())
            heads = script.get_heads()
            logger.info(f"Found {len(heads)} migration heads: {heads}")

            with db.engine.connect() as connection:
                current_rev = MigrationContext.configure(
                    connection
                ).get_current_revision()
            logger.info(f"Current database revision: {current_rev}")

            if current_rev in heads:
                print(f"Database is already current (revision: {current_rev})")
                return

            if len(heads) > 1:
                logger.warning(f"Multiple heads detected: {heads}")
                upgrade(revision="heads")
            else:
                upgrade(revision="head")

            logger.info("Flask-Migrate upgrade completed successfully")
            print("Database migrations completed successfully")

    except Exception as e:
        print(f"Migration failed: {e}")
        logger.exception(f"Migration failed: {e}")
        sys.exit(1)

    logger.info("Migration script completed successfully")


if __name__ == "__main__":
    run_migrations()
