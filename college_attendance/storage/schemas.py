from __future__ import annotations

from datetime import datetime
from typing import Callable

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, Index, Integer, MetaData, String, Table, Text, UniqueConstraint

from college_attendance.core.streams import EntityKind


def _timestamps() -> list[Column]:
    return [
        Column('created_at', DateTime, nullable=False, default=datetime.utcnow),
        Column('updated_at', DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
    ]


def student_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column('id', Integer, primary_key=True),
        Column('student_id', String(64), nullable=False),
        Column('name', String(100), nullable=False),
        Column('stream', String(60), nullable=False),
        Column('semester', Integer, nullable=False),
        Column('parent_phone', String(20), nullable=True),
        Column('language_choice', String(20), nullable=True),
        Column('academic_year', Integer, nullable=False),
        Column('is_active', Boolean, nullable=False, default=True),
        Column('migration_generation', Integer, nullable=False, default=0),
        Column('original_semester', Integer, nullable=False),
        Column('added_to_semester_at', DateTime, nullable=False, default=datetime.utcnow),
        Column('last_migration_at', DateTime, nullable=True),
        Column('migration_batch', String(120), nullable=True),
        Column('migration_history', JSON, nullable=False, default=list),
        *_timestamps(),
        UniqueConstraint('student_id', name=f'uq_{name}_sid'),
        Index(f'ix_{name}_active', 'is_active'),
    )


def subject_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column('id', Integer, primary_key=True),
        Column('subject_name', String(120), nullable=False),
        Column('subject_code', String(40), nullable=False),
        Column('stream', String(60), nullable=False),
        Column('semester', Integer, nullable=False),
        Column('subject_type', String(20), nullable=False, default='CORE'),
        Column('is_language_subject', Boolean, nullable=False, default=False),
        Column('language_type', String(20), nullable=True),
        Column('credits', Integer, nullable=False, default=4),
        Column('description', Text, nullable=False, default=''),
        Column('is_active', Boolean, nullable=False, default=True),
        *_timestamps(),
        UniqueConstraint('subject_name', name=f'uq_{name}_name'),
    )


def attendance_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column('id', Integer, primary_key=True),
        Column('date', Date, nullable=False),
        Column('subject', String(120), nullable=False),
        Column('session_slot', Integer, nullable=False, default=1),
        Column('session_time', String(5), nullable=True),
        Column('stream', String(60), nullable=False),
        Column('semester', Integer, nullable=False),
        Column('students_present', JSON, nullable=False, default=list),
        Column('eligible_students', JSON, nullable=False, default=list),
        Column('total_students', Integer, nullable=False, default=0),
        Column('percentage', Float, nullable=False, default=0.0),
        Column('marked_by', String(120), nullable=True),
        *_timestamps(),
        UniqueConstraint('date', 'subject', 'session_slot', name=f'uq_{name}_session'),
    )


SCHEMA_BUILDERS: dict[EntityKind, Callable[[str, MetaData], Table]] = {
    EntityKind.STUDENTS: student_table,
    EntityKind.SUBJECTS: subject_table,
    EntityKind.ATTENDANCE: attendance_table,
}


def row_to_dict(row) -> dict | None:
    if row is None:
        return None
    return dict(row._mapping)
