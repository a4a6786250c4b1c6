"""shared tables: notification log and teacher library

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)
    tables = set(inspector.get_table_names())

    if 'notification_logs' not in tables:
        op.create_table(
            'notification_logs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('date', sa.String(length=10), nullable=False),
            sa.Column('stream', sa.String(length=60), nullable=False),
            sa.Column('semester', sa.Integer(), nullable=False),
            sa.Column('messages_sent', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('messages_failed', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_students_notified', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('full_day_absent_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('partial_day_absent_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('subjects_included', sa.JSON(), nullable=True),
            sa.Column('results', sa.JSON(), nullable=True),
            sa.Column('sent_by', sa.String(length=20), nullable=False, server_default='manual'),
            sa.Column('sent_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('date', 'stream', 'semester', name='uq_notification_logs_date_stream_semester'),
        )
        op.create_index('ix_notification_logs_id', 'notification_logs', ['id'])
        op.create_index('ix_notification_logs_date', 'notification_logs', ['date'])
        op.create_index('ix_notification_logs_sent_at', 'notification_logs', ['sent_at'])
        op.create_index('ix_notification_logs_stream_semester', 'notification_logs', ['stream', 'semester'])

    if 'teacher_profiles' not in tables:
        op.create_table(
            'teacher_profiles',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('external_uid', sa.String(length=128), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('attendance_queue', sa.JSON(), nullable=True),
            sa.Column('completed_today', sa.JSON(), nullable=True),
            sa.Column('last_queue_update', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_teacher_profiles_id', 'teacher_profiles', ['id'])
        op.create_index('ix_teacher_profiles_external_uid', 'teacher_profiles', ['external_uid'], unique=True)
        op.create_index('ix_teacher_profiles_email', 'teacher_profiles', ['email'], unique=True)

    if 'teacher_subjects' not in tables:
        op.create_table(
            'teacher_subjects',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('teacher_profiles.id'), nullable=False),
            sa.Column('subject_name', sa.String(length=120), nullable=False),
            sa.Column('subject_code', sa.String(length=40), nullable=False),
            sa.Column('stream', sa.String(length=60), nullable=False),
            sa.Column('semester', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('students', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint(
                'teacher_id', 'subject_code', 'stream', 'semester', name='uq_teacher_subjects_teacher_code'
            ),
        )
        op.create_index('ix_teacher_subjects_id', 'teacher_subjects', ['id'])
        op.create_index('ix_teacher_subjects_teacher_id', 'teacher_subjects', ['teacher_id'])
        op.create_index('ix_teacher_subjects_status', 'teacher_subjects', ['status'])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)
    tables = set(inspector.get_table_names())
    for name in ('teacher_subjects', 'teacher_profiles', 'notification_logs'):
        if name in tables:
            op.drop_table(name)
