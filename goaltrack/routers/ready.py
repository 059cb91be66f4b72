import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..db import get_db
from ..infra.redis_client import get_redis

router = APIRouter()
logger = logging.getLogger("goaltrack.ready")


def check_db(db: Session = Depends(get_db)) -> bool:
    # Sync dependency, so FastAPI runs the blocking query in its threadpool.
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database readiness check failed: {e}")
        return False


@router.get("/ready")
async def ready(db_ok: bool = Depends(check_db)):
    redis_ok = False
    try:
        r = await get_redis()
        await r.ping()
        redis_ok = True
    except Exception as e:
        logger.error(f"Redis readiness check failed: {e}")

    return {"ok": db_ok, "db_ok": db_ok, "redis_ok": redis_ok}
