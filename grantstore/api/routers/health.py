"""Health (sin auth), salidas tipadas y estables."""
from fastapi import APIRouter, status

from grantstore.api.schemas.health import HealthOut, PingOut
from grantstore.infrastructure.db.mongo_async import db_ping
from grantstore.services.token_cleanup_service import cleanup_running


router = APIRouter(tags=["Health"])  # no prefix to keep paths stable


@router.get("/ping", response_model=PingOut, summary="Ping básico")
def ping() -> PingOut:
    return PingOut(message="pong")


@router.get("/health", status_code=status.HTTP_200_OK, response_model=HealthOut, summary="Salud de Mongo y del reaper")
async def health() -> HealthOut:
    mongo = await db_ping()
    return HealthOut(ok=mongo, mongo=mongo, token_cleanup_running=cleanup_running())
