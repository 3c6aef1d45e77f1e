"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'api_keys',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('key_hash', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('key_prefix', sa.String(12), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('owner', sa.String(100), nullable=False, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'patients',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('owner_id', sa.String(100), nullable=False, index=True),
        sa.Column('patient_number', sa.String(50), nullable=False),
        sa.Column('client_name', sa.String(200), nullable=False),
        sa.Column('pet_name', sa.String(100), nullable=True),
        sa.Column('pet_breed', sa.String(100), nullable=True),
        sa.Column('pet_age', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'consultations',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('owner_id', sa.String(100), nullable=False, index=True),
        sa.Column('patient_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('patients.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('client_name', sa.String(200), nullable=False),
        sa.Column('patient_number', sa.String(50), nullable=False),
        sa.Column('pet_name', sa.String(100), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('audio_path', sa.Text(), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('full_transcription', sa.Text(), nullable=True),
        sa.Column('ai_soap_note', sa.Text(), nullable=True),
        sa.Column('final_soap_note', sa.Text(), nullable=True),
        sa.Column('is_finalized', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.Enum('processing', 'completed', 'failed', name='consultationstatus'), nullable=False, server_default='processing', index=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('consultations')
    op.drop_table('patients')
    op.drop_table('api_keys')
    sa.Enum(name='consultationstatus').drop(op.get_bind(), checkfirst=True)
