"""
Services

Submodules are imported directly (``from content_ingestion.services.pipeline
import PipelineRunner``); this package does not re-export them.
"""
