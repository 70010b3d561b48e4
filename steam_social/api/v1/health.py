from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from steam_social.api.deps import get_db
from steam_social.core.cache import cache
from steam_social.core.settings import settings
from steam_social.db.session import check_connection

router = APIRouter()


@router.get("/health")
def health(db: Session = Depends(get_db)):
    db_ok = check_connection(db)

    cache.put("health:check", "ok", ttl=5)
    cache_ok = cache.get("health:check") == "ok"

    return {
        "status": "UP" if (db_ok and cache_ok) else "PARTIAL",
        "application": settings.PROJECT_NAME,
        "database": "UP" if db_ok else "DOWN",
        "cache": "UP" if cache_ok else "DOWN",
        "cached_entries": len(cache),
    }
