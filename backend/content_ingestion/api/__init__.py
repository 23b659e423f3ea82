"""
API routes initialization.

This module aggregates all API routers and provides a single router
to include in the main application.
"""

from fastapi import APIRouter

from content_ingestion.api.routes import content, ingestion

# Create main API router
api_router = APIRouter()

# Ingestion endpoints (accept work, return immediately)
api_router.include_router(ingestion.router)

# Content read, reprocess and delete endpoints
api_router.include_router(content.router)
