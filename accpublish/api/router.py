from fastapi import APIRouter

from accpublish.api.publish import router as publish_router

api_router = APIRouter()

# API routes at /api/publish/*
api_router.include_router(publish_router, prefix="/api/publish", tags=["publish"])
