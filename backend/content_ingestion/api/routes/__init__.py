"""
API route modules.
"""

from content_ingestion.api.routes import content, ingestion

__all__ = ["content", "ingestion"]
