"""create_content_ingestion_tables

Revision ID: 5b2d0c7e9a41
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b2d0c7e9a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Must match EMBEDDING_DIMENSION (all-MiniLM-L6-v2)
EMBEDDING_DIMENSION = 384

content_source_type = postgresql.ENUM(
    'FILE', 'URL', 'YOUTUBE', 'GITHUB', 'MANUAL',
    name='contentsourcetype', create_type=False,
)
processing_status = postgresql.ENUM(
    'PENDING', 'EXTRACTING', 'PROCESSING', 'CHUNKING', 'EMBEDDING', 'COMPLETED', 'FAILED',
    name='processingstatus', create_type=False,
)
extraction_method = postgresql.ENUM(
    'AUTO', 'PDF_JS', 'OCR', 'SPEECH_TO_TEXT', 'HTML_PARSER', 'MARKDOWN_PARSER', 'PLAIN_TEXT',
    name='extractionmethod', create_type=False,
)
job_type = postgresql.ENUM(
    'CONTENT_PROCESSING', 'CONTENT_REPROCESSING',
    name='jobtype', create_type=False,
)
job_status = postgresql.ENUM(
    'PENDING', 'ACTIVE', 'DELAYED', 'COMPLETED', 'FAILED', 'CANCELLED',
    name='jobstatus', create_type=False,
)

ENUMS = (content_source_type, processing_status, extraction_method, job_type, job_status)


def upgrade() -> None:
    """
    Create the content ingestion schema.

    1. content_items - ingested content with pipeline state and versions
    2. content_chunks - ordered text chunks with their embeddings
    3. ingestion_jobs - persisted pipeline runs

    Plus an HNSW index on content_chunks.embedding for the retrieval side.
    """
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ================================
    # content_items
    # ================================
    op.create_table(
        'content_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
        sa.Column('source_id', sa.String(length=500), nullable=False, comment='Origin-system reference (file id, URL, video id, owner/repo:path)'),
        sa.Column('source_type', content_source_type, nullable=False, comment='Type of content source'),
        sa.Column('source_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Source-specific metadata (file info, repo, video stats)'),
        sa.Column('title', sa.String(length=500), nullable=True, comment='Content title'),
        sa.Column('description', sa.Text(), nullable=True, comment='Short description or summary'),
        sa.Column('content', sa.Text(), nullable=False, comment='Extracted plain text (empty until extraction completes)'),
        sa.Column('content_type', sa.String(length=100), nullable=True, comment='MIME type of the source payload'),
        sa.Column('language', sa.String(length=50), nullable=True, comment='Detected or declared language code'),
        sa.Column('processing_status', processing_status, nullable=False, comment='Processing pipeline status'),
        sa.Column('processing_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Durations, token counts, confidence or last error'),
        sa.Column('extraction_method', extraction_method, nullable=True, comment='Extraction strategy used for this item'),
        sa.Column('total_chunks', sa.Integer(), nullable=False, comment='Number of chunks after the last successful run'),
        sa.Column('tags', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('categories', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('course_id', sa.String(length=255), nullable=True),
        sa.Column('module_id', sa.String(length=255), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True, comment='Previous version of this content'),
        sa.Column('is_latest', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True, comment='When the last run completed (UTC)'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, comment='Soft-delete marker'),
        sa.ForeignKeyConstraint(['parent_id'], ['content_items.id'], name=op.f('fk_content_items_parent_id_content_items'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_content_items')),
    )
    op.create_index(op.f('ix_content_items_source_id'), 'content_items', ['source_id'], unique=False)
    op.create_index(op.f('ix_content_items_source_type'), 'content_items', ['source_type'], unique=False)
    op.create_index(op.f('ix_content_items_processing_status'), 'content_items', ['processing_status'], unique=False)
    op.create_index(op.f('ix_content_items_course_id'), 'content_items', ['course_id'], unique=False)
    op.create_index(op.f('ix_content_items_module_id'), 'content_items', ['module_id'], unique=False)
    op.create_index(op.f('ix_content_items_deleted_at'), 'content_items', ['deleted_at'], unique=False)
    op.create_index('ix_content_items_course_module', 'content_items', ['course_id', 'module_id'], unique=False)

    # ================================
    # content_chunks
    # ================================
    op.create_table(
        'content_chunks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
        sa.Column('content_item_id', sa.Integer(), nullable=False, comment='Foreign key to content_items table'),
        sa.Column('chunk_index', sa.Integer(), nullable=False, comment='Order of this chunk within the content item (0-indexed)'),
        sa.Column('chunk_text', sa.Text(), nullable=False),
        sa.Column('tokens', sa.Integer(), nullable=False, comment='Approximate token count of chunk_text'),
        sa.Column('start_position', sa.Integer(), nullable=False),
        sa.Column('end_position', sa.Integer(), nullable=False),
        sa.Column('chunk_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSION), nullable=True, comment='Embedding vector, NULL until embedded'),
        sa.Column('embedding_model', sa.String(length=255), nullable=True),
        sa.Column('embedding_dimensions', sa.Integer(), nullable=True),
        sa.Column('embedded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['content_item_id'], ['content_items.id'], name=op.f('fk_content_chunks_content_item_id_content_items'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_content_chunks')),
        sa.UniqueConstraint('content_item_id', 'chunk_index', name='uq_content_item_chunk_index'),
    )
    op.create_index(op.f('ix_content_chunks_content_item_id'), 'content_chunks', ['content_item_id'], unique=False)

    # HNSW index for cosine similarity search
    op.execute(
        'CREATE INDEX ix_content_chunks_embedding_hnsw ON content_chunks '
        'USING hnsw (embedding vector_cosine_ops) WITH (m = 16, ef_construction = 64)'
    )

    # ================================
    # ingestion_jobs
    # ================================
    op.create_table(
        'ingestion_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
        sa.Column('content_item_id', sa.Integer(), nullable=False),
        sa.Column('job_type', job_type, nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('input_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('output_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['content_item_id'], ['content_items.id'], name=op.f('fk_ingestion_jobs_content_item_id_content_items'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_ingestion_jobs')),
    )
    op.create_index(op.f('ix_ingestion_jobs_content_item_id'), 'ingestion_jobs', ['content_item_id'], unique=False)
    op.create_index(op.f('ix_ingestion_jobs_status'), 'ingestion_jobs', ['status'], unique=False)
    op.create_index('ix_ingestion_jobs_item_status', 'ingestion_jobs', ['content_item_id', 'status'], unique=False)
    op.create_index(
        'uq_ingestion_jobs_unfinished_item',
        'ingestion_jobs',
        ['content_item_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'DELAYED', 'ACTIVE')"),
    )


def downgrade() -> None:
    """Drop the content ingestion schema (the vector extension is left in place)."""
    op.drop_index('uq_ingestion_jobs_unfinished_item', table_name='ingestion_jobs')
    op.drop_index('ix_ingestion_jobs_item_status', table_name='ingestion_jobs')
    op.drop_index(op.f('ix_ingestion_jobs_status'), table_name='ingestion_jobs')
    op.drop_index(op.f('ix_ingestion_jobs_content_item_id'), table_name='ingestion_jobs')
    op.drop_table('ingestion_jobs')

    op.execute('DROP INDEX IF EXISTS ix_content_chunks_embedding_hnsw')
    op.drop_index(op.f('ix_content_chunks_content_item_id'), table_name='content_chunks')
    op.drop_table('content_chunks')

    op.drop_index('ix_content_items_course_module', table_name='content_items')
    op.drop_index(op.f('ix_content_items_deleted_at'), table_name='content_items')
    op.drop_index(op.f('ix_content_items_module_id'), table_name='content_items')
    op.drop_index(op.f('ix_content_items_course_id'), table_name='content_items')
    op.drop_index(op.f('ix_content_items_processing_status'), table_name='content_items')
    op.drop_index(op.f('ix_content_items_source_type'), table_name='content_items')
    op.drop_index(op.f('ix_content_items_source_id'), table_name='content_items')
    op.drop_table('content_items')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
