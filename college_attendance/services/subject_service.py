from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import Table, insert, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from college_attendance.core.partitions import subject_slug
from college_attendance.core.streams import Language, StreamDescriptor, SubjectType
from college_attendance.errors import DuplicateSubject, SubjectNotFound, ValidationFailed
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


logger = logging.getLogger(__name__)


def normalize_subject_name(raw: str | None) -> str:
    return re.sub(r'\s+', ' ', str(raw or '').strip()).upper()


def default_subject_code(descriptor: StreamDescriptor, semester: int, subject_name: str) -> str:
    stream_code = re.sub(r'\s+', '', descriptor.display_name).upper()
    return f'{stream_code}{int(semester)}{subject_name[:3].upper()}'


def public_subject(row: dict) -> dict:
    data = dict(row)
    data.pop('id', None)
    return data


def find_active_subject(conn: Connection, table: Table, subject_name: str) -> dict:
    name = normalize_subject_name(subject_name)
    row = conn.execute(
        select(table).where(table.c.subject_name == name, table.c.is_active.is_(True))
    ).first()
    if row is None:
        raise SubjectNotFound(f'Subject "{subject_name}" not found', subject=subject_name, partition=table.name)
    return row_to_dict(row)


def active_subjects(conn: Connection, table: Table) -> list[dict]:
    rows = conn.execute(
        select(table).where(table.c.is_active.is_(True)).order_by(table.c.subject_name.asc())
    ).all()
    return [row_to_dict(row) for row in rows]


def _subject_values(descriptor: StreamDescriptor, semester: int, payload: dict[str, Any]) -> dict:
    name = normalize_subject_name(payload.get('subject_name'))
    if len(name) < 2:
        raise ValidationFailed('Subject name must be at least 2 characters long', field='subject_name')
    # Attendance partitions are keyed by the subject slug, so it must be usable.
    subject_slug(name)

    subject_type = SubjectType(str(getattr(payload.get('subject_type'), 'value', payload.get('subject_type') or 'CORE')).upper())
    is_language = bool(payload.get('is_language_subject')) or subject_type is SubjectType.LANGUAGE
    language_type = None
    if is_language:
        raw_language = payload.get('language_type')
        if not raw_language:
            raise ValidationFailed('Language subjects require a language_type', field='language_type')
        try:
            language_type = Language(str(getattr(raw_language, 'value', raw_language)).upper()).value
        except ValueError as exc:
            raise ValidationFailed(f'Unsupported language: {raw_language}', field='language_type') from exc

    credits = int(payload.get('credits') or 4)
    if not 1 <= credits <= 6:
        raise ValidationFailed('Credits must be between 1 and 6', field='credits')

    code = str(payload.get('subject_code') or '').strip().upper() or default_subject_code(descriptor, semester, name)
    return {
        'subject_name': name,
        'subject_code': code,
        'stream': descriptor.display_name,
        'semester': int(semester),
        'subject_type': subject_type.value,
        'is_language_subject': is_language,
        'language_type': language_type,
        'credits': credits,
        'description': payload.get('description') or f'{name} for {descriptor.display_name} semester {semester}',
        'is_active': payload.get('is_active') is not False,
    }


def create_subject(store: PartitionStore, stream: str, semester: int, payload: dict[str, Any]) -> dict:
    descriptor = store.registry.validate(stream, semester)
    table = store.subjects(descriptor.display_name, semester)
    values = _subject_values(descriptor, semester, payload)
    message = f"Subject \"{values['subject_name']}\" already exists in {table.name}"
    try:
        with store.engine.begin() as conn:
            exists = conn.execute(
                select(table.c.id).where(table.c.subject_name == values['subject_name'])
            ).first()
            if exists is not None:
                raise DuplicateSubject(message, subject=values['subject_name'])
            conn.execute(insert(table).values(**values))
            row = conn.execute(select(table).where(table.c.subject_name == values['subject_name'])).first()
    except IntegrityError as exc:
        raise DuplicateSubject(message, subject=values['subject_name']) from exc
    logger.info('subject_created partition=%s subject=%s code=%s', table.name, values['subject_name'], values['subject_code'])
    return public_subject(row_to_dict(row))


def setup_subjects(store: PartitionStore, stream: str, semester: int, names: list[str]) -> dict:
    if not names:
        raise ValidationFailed('Subjects array is required and must not be empty', field='subjects')
    descriptor = store.registry.validate(stream, semester)
    results = []
    added = 0
    for raw in names:
        label = str(raw or '').strip()
        try:
            created = create_subject(store, descriptor.display_name, semester, {'subject_name': label})
        except (ValidationFailed, DuplicateSubject) as exc:
            results.append({'subject_name': label, 'success': False, 'error': exc.message})
            continue
        added += 1
        results.append({'subject_name': created['subject_name'], 'subject_code': created['subject_code'], 'success': True})
    logger.info(
        'subjects_setup stream=%s semester=%s added=%s total=%s',
        descriptor.display_name,
        semester,
        added,
        len(names),
    )
    return {
        'stream': descriptor.display_name,
        'semester': int(semester),
        'total': len(names),
        'added': added,
        'failed': len(names) - added,
        'results': results,
    }


def list_subjects(store: PartitionStore, stream: str, semester: int) -> dict:
    descriptor = store.registry.validate(stream, semester)
    table = store.subjects(descriptor.display_name, semester)
    with store.engine.connect() as conn:
        subjects = active_subjects(conn, table)
    return {
        'stream': descriptor.display_name,
        'semester': int(semester),
        'count': len(subjects),
        'subjects': [public_subject(row) for row in subjects],
        'partition': table.name,
    }


def list_all_subjects(
    store: PartitionStore,
    *,
    stream: str | None = None,
    semester: int | None = None,
    is_active: str = 'true',
    subject_type: SubjectType | None = None,
    search: str = '',
) -> dict:
    descriptors = [store.registry.get(stream)] if stream else list(store.registry)
    collected: list[dict] = []
    scanned: list[str] = []
    with store.engine.connect() as conn:
        for descriptor in descriptors:
            for sem in descriptor.allowed_semesters:
                if semester is not None and sem != int(semester):
                    continue
                table = store.subjects(descriptor.display_name, sem, create=False)
                if table is None:
                    continue
                scanned.append(table.name)
                query = select(table)
                if is_active != 'all':
                    query = query.where(table.c.is_active.is_(is_active == 'true'))
                if subject_type is not None:
                    query = query.where(table.c.subject_type == SubjectType(subject_type).value)
                term = (search or '').strip()
                if term:
                    pattern = f'%{term}%'
                    query = query.where(or_(table.c.subject_name.ilike(pattern), table.c.subject_code.ilike(pattern)))
                for row in conn.execute(query.order_by(table.c.subject_name.asc())).all():
                    data = public_subject(row_to_dict(row))
                    data['partition'] = table.name
                    collected.append(data)
    collected.sort(key=lambda row: (row['stream'], row['semester'], row['subject_name']))
    return {
        'count': len(collected),
        'subjects': collected,
        'metadata': {'partitions_scanned': scanned},
    }
