from datetime import datetime, timezone
from sqlalchemy.orm import Session
from mailmaint.database import SessionLocal
from mailmaint import crud
from mailmaint.core.config import settings
import logging

logger = logging.getLogger(__name__)


def cleanup_finished_runs(db: Session, retention_days: int = None):
    """remove finished plan runs and their progress events past retention"""
    retention_days = retention_days or settings.RUN_RETENTION_DAYS
    try:
        deleted_count = crud.cleanup_finished_runs(db, retention_days)
        logger.info(f"Cleaned up {deleted_count} plan runs older than {retention_days} days")
        return deleted_count
    except Exception as e:
        logger.error(f"Error cleaning up plan runs: {e}")
        db.rollback()
        return 0


def run_all_cleanup_tasks():
    """
    run all data retention cleanup tasks
    """
    db = SessionLocal()
    try:
        logger.info(f"Starting data retention cleanup at {datetime.now(timezone.utc).isoformat()}")
        cleanup_finished_runs(db)
        logger.info("Data retention cleanup tasks completed")
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_all_cleanup_tasks()
