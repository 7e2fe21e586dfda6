from fastapi import APIRouter

from storescout.api.routes import discoveries, health, pipeline, stores

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(discoveries.router, prefix="/discoveries", tags=["connector"])
api_router.include_router(stores.router, prefix="/stores", tags=["stores"])
api_router.include_router(pipeline.router, prefix="/pipeline", tags=["pipeline"])
