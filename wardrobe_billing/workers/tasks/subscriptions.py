"""
Celery beat task: downgrade canceled subscriptions whose paid period has ended.
Canceled users keep their tier through the grace period; this is what ends it.
"""
import logging

from sqlalchemy.exc import ProgrammingError

from wardrobe_billing.core.celery_app import celery_app
from wardrobe_billing.db.session import SessionLocal
from wardrobe_billing.core.config import settings
from wardrobe_billing.services.billing.config import BillingConfig
from wardrobe_billing.services.subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="wardrobe_billing.workers.tasks.subscriptions.expire_lapsed_subscriptions",
    time_limit=60,
    soft_time_limit=55,
)
def expire_lapsed_subscriptions() -> dict:
    db = SessionLocal()
    try:
        service = SubscriptionService(db, BillingConfig.from_settings(settings))
        expired = service.expire_lapsed()
        db.commit()
        if expired > 0:
            logger.info("subscriptions_expired", extra={"count": expired})
        return {"ok": True, "expired_count": expired}
    except ProgrammingError as e:
        msg = str(e.orig) if getattr(e, "orig", None) else str(e)
        if "does not exist" in msg or "UndefinedTable" in msg:
            db.rollback()
            return {"ok": True, "skipped": "table_not_found"}
        logger.exception("expire_lapsed_subscriptions_error")
        db.rollback()
        return {"ok": False}
    except Exception:
        logger.exception("expire_lapsed_subscriptions_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
