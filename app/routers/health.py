from fastapi import APIRouter

from app.database import ping_db

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    database_ok = ping_db()
    return {"status": "ok" if database_ok else "degraded", "database": database_ok}
