from fastapi import APIRouter

from curator_api.api.routes import health, ingest, pending_shows

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(ingest.router, prefix="/ingest", tags=["ingest"])
api_router.include_router(pending_shows.router, prefix="/pending-shows", tags=["moderation"])
