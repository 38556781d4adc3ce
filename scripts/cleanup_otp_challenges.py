import structlog

from accounts.core.config import settings
from accounts.core.logging import configure_logging
from accounts.db.session import SessionLocal
from accounts.services.otp import sweep_challenges

logger = structlog.get_logger("cleanup_otp_challenges")


def main():
    configure_logging()
    db = SessionLocal()
    try:
        deleted = sweep_challenges(db)
        db.commit()
        logger.info("otp_cleanup_done", deleted=deleted, retention_days=settings.OTP_RETENTION_DAYS)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
