from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import Table, asc, delete, desc, func, insert, or_, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from college_attendance.config import settings
from college_attendance.core.phone import is_valid_phone, mask_phone
from college_attendance.core.streams import Language, StreamDescriptor
from college_attendance.core.time_provider import TimeProvider, default_time_provider
from college_attendance.errors import DuplicateStudent, StudentNotFound, ValidationFailed
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


logger = logging.getLogger(__name__)

_STUDENT_ID_RE = re.compile(r'^[A-Z0-9_-]+$')
_SORTABLE_FIELDS = ('name', 'student_id', 'semester', 'stream', 'academic_year', 'created_at')
_UPDATABLE_FIELDS = ('name', 'parent_phone', 'language_choice', 'academic_year', 'is_active')


def normalize_student_id(raw: str | None) -> str:
    value = str(raw or '').strip().upper()
    if not value:
        raise ValidationFailed('Student ID is required', field='student_id')
    if not _STUDENT_ID_RE.match(value):
        raise ValidationFailed(
            'Student ID can only contain letters, numbers, hyphens and underscores',
            field='student_id',
        )
    return value


def _clean_phone(phone: str | None, *, required: bool) -> str | None:
    value = (phone or '').strip()
    if not value:
        if required:
            raise ValidationFailed('Parent phone is required', field='parent_phone')
        return None
    if not is_valid_phone(value):
        raise ValidationFailed('Please enter a valid phone number (10-15 digits)', field='parent_phone')
    return value


def _language_value(value: Language | str | None) -> str | None:
    if value is None or value == '':
        return None
    try:
        return Language(str(getattr(value, 'value', value)).upper()).value
    except ValueError as exc:
        raise ValidationFailed(f'Unsupported language: {value}', field='language_choice') from exc


def active_students(conn: Connection, table: Table) -> list[dict]:
    rows = conn.execute(
        select(table).where(table.c.is_active.is_(True)).order_by(table.c.student_id.asc())
    ).all()
    return [row_to_dict(row) for row in rows]


def public_student(row: dict) -> dict:
    data = dict(row)
    data.pop('id', None)
    return data


def _student_values(
    descriptor: StreamDescriptor,
    semester: int,
    payload: dict[str, Any],
    *,
    require_phone: bool,
    time_provider: TimeProvider,
) -> dict:
    name = str(payload.get('name') or '').strip()
    if not name:
        raise ValidationFailed('Student name is required', field='name')
    now = time_provider.naive_now()
    return {
        'student_id': normalize_student_id(payload.get('student_id')),
        'name': name,
        'stream': descriptor.display_name,
        'semester': int(semester),
        'parent_phone': _clean_phone(payload.get('parent_phone'), required=require_phone),
        'language_choice': _language_value(payload.get('language_choice')),
        'academic_year': int(payload.get('academic_year') or now.year),
        'is_active': payload.get('is_active') is not False,
        'migration_generation': 0,
        'original_semester': int(semester),
        'added_to_semester_at': now,
        'migration_history': [],
    }


def create_student(
    store: PartitionStore,
    stream: str,
    semester: int,
    payload: dict[str, Any],
    *,
    require_phone: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    descriptor = store.registry.validate(stream, semester)
    table = store.students(descriptor.display_name, semester)
    values = _student_values(descriptor, semester, payload, require_phone=require_phone, time_provider=time_provider)
    try:
        with store.engine.begin() as conn:
            existing = conn.execute(
                select(table.c.name).where(table.c.student_id == values['student_id'])
            ).first()
            if existing is not None:
                raise DuplicateStudent(
                    f"Student \"{values['student_id']}\" already exists in {table.name}",
                    student_id=values['student_id'],
                    existing_name=existing.name,
                )
            conn.execute(insert(table).values(**values))
            row = conn.execute(select(table).where(table.c.student_id == values['student_id'])).first()
    except IntegrityError as exc:
        raise DuplicateStudent(
            f"Student \"{values['student_id']}\" already exists in {table.name}",
            student_id=values['student_id'],
        ) from exc
    logger.info('student_created partition=%s student_id=%s', table.name, values['student_id'])
    return public_student(row_to_dict(row))


def bulk_upload_students(
    store: PartitionStore,
    stream: str,
    semester: int,
    items: list[dict[str, Any]],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    if not items:
        raise ValidationFailed('Students array is required and must not be empty', field='students')
    descriptor = store.registry.validate(stream, semester)
    results = []
    added = 0
    for item in items:
        label = str(item.get('student_id') or 'UNKNOWN')
        if not item.get('student_id') or not item.get('name') or not item.get('parent_phone'):
            results.append({
                'student_id': label,
                'name': item.get('name') or 'UNKNOWN',
                'success': False,
                'error': 'Missing required fields: student_id, name, parent_phone',
            })
            continue
        try:
            created = create_student(
                store,
                descriptor.display_name,
                semester,
                item,
                require_phone=True,
                time_provider=time_provider,
            )
        except (ValidationFailed, DuplicateStudent) as exc:
            results.append({'student_id': label, 'name': item.get('name'), 'success': False, 'error': exc.message})
            continue
        added += 1
        results.append({'student_id': created['student_id'], 'name': created['name'], 'success': True})
    logger.info(
        'students_bulk_uploaded stream=%s semester=%s added=%s total=%s',
        descriptor.display_name,
        semester,
        added,
        len(items),
    )
    return {
        'stream': descriptor.display_name,
        'semester': int(semester),
        'total': len(items),
        'added': added,
        'failed': len(items) - added,
        'results': results,
    }


def list_students(store: PartitionStore, stream: str, semester: int) -> dict:
    descriptor = store.registry.validate(stream, semester)
    table = store.students(descriptor.display_name, semester)
    with store.engine.connect() as conn:
        students = active_students(conn, table)
    return {
        'stream': descriptor.display_name,
        'semester': int(semester),
        'count': len(students),
        'students': [public_student(row) for row in students],
        'partition': table.name,
    }


def _sort_value(row: dict, field: str):
    value = row.get(field)
    if value is None:
        return ''
    if isinstance(value, str):
        return value.lower()
    return value


def list_all_students(
    store: PartitionStore,
    *,
    stream: str | None = None,
    semester: int | None = None,
    is_active: str = 'true',
    academic_year: int | None = None,
    search: str = '',
    sort_by: str = 'name',
    sort_order: str = 'asc',
    page: int = 1,
    limit: int = 5000,
) -> dict:
    if sort_by not in _SORTABLE_FIELDS:
        raise ValidationFailed(f'Cannot sort by {sort_by}', field='sort_by', allowed=list(_SORTABLE_FIELDS))
    descriptors = [store.registry.get(stream)] if stream else list(store.registry)
    order = asc if sort_order == 'asc' else desc

    collected: list[dict] = []
    scanned: list[str] = []
    with_data: list[dict] = []
    with store.engine.connect() as conn:
        for descriptor in descriptors:
            for sem in descriptor.allowed_semesters:
                if semester is not None and sem != int(semester):
                    continue
                table = store.students(descriptor.display_name, sem, create=False)
                if table is None:
                    continue
                scanned.append(table.name)
                query = select(table)
                if is_active != 'all':
                    query = query.where(table.c.is_active.is_(is_active == 'true'))
                if academic_year is not None:
                    query = query.where(table.c.academic_year == int(academic_year))
                term = (search or '').strip()
                if term:
                    pattern = f'%{term}%'
                    query = query.where(or_(
                        table.c.name.ilike(pattern),
                        table.c.student_id.ilike(pattern),
                        table.c.parent_phone.ilike(pattern),
                        table.c.language_choice.ilike(pattern),
                    ))
                rows = conn.execute(query.order_by(order(table.c[sort_by]))).all()
                if rows:
                    with_data.append({'partition': table.name, 'count': len(rows), 'stream': descriptor.display_name, 'semester': sem})
                for row in rows:
                    data = public_student(row_to_dict(row))
                    data['partition'] = table.name
                    collected.append(data)

    collected.sort(key=lambda row: _sort_value(row, sort_by), reverse=sort_order != 'asc')
    total = len(collected)
    page_num = max(1, int(page))
    limit_num = min(settings.students_list_max_limit, max(1, int(limit)))
    start = (page_num - 1) * limit_num
    page_rows = collected[start:start + limit_num]
    return {
        'count': len(page_rows),
        'total': total,
        'page': page_num,
        'limit': limit_num,
        'total_pages': (total + limit_num - 1) // limit_num,
        'students': page_rows,
        'metadata': {
            'partitions_scanned': scanned,
            'partitions_with_data': with_data,
        },
    }


def find_student(store: PartitionStore, student_id: str) -> tuple[StreamDescriptor, int, Table, dict]:
    normalized = str(student_id or '').strip().upper()
    with store.engine.connect() as conn:
        for descriptor in store.registry:
            for sem in descriptor.allowed_semesters:
                table = store.students(descriptor.display_name, sem, create=False)
                if table is None:
                    continue
                row = conn.execute(select(table).where(table.c.student_id == normalized)).first()
                if row is not None:
                    return descriptor, sem, table, row_to_dict(row)
    raise StudentNotFound(f'Student {student_id} not found', student_id=student_id)


def get_student(store: PartitionStore, student_id: str) -> dict:
    _, _, table, row = find_student(store, student_id)
    data = public_student(row)
    data['partition'] = table.name
    return data


def update_student(
    store: PartitionStore,
    student_id: str,
    updates: dict[str, Any],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    values = {key: updates[key] for key in _UPDATABLE_FIELDS if key in updates and updates[key] is not None}
    if not values:
        raise ValidationFailed('No updates provided')
    if 'name' in values:
        values['name'] = str(values['name']).strip()
        if not values['name']:
            raise ValidationFailed('Student name is required', field='name')
    if 'parent_phone' in values:
        values['parent_phone'] = _clean_phone(values['parent_phone'], required=False)
    if 'language_choice' in values:
        values['language_choice'] = _language_value(values['language_choice'])
    values['updated_at'] = time_provider.naive_now()

    _, _, table, row = find_student(store, student_id)
    with store.engine.begin() as conn:
        conn.execute(update(table).where(table.c.id == row['id']).values(**values))
        updated = conn.execute(select(table).where(table.c.id == row['id'])).first()
    logger.info(
        'student_updated partition=%s student_id=%s fields=%s',
        table.name,
        row['student_id'],
        ','.join(sorted(key for key in values if key != 'updated_at')),
    )
    data = public_student(row_to_dict(updated))
    data['partition'] = table.name
    return data


def delete_student(store: PartitionStore, student_id: str) -> dict:
    _, _, table, row = find_student(store, student_id)
    with store.engine.begin() as conn:
        conn.execute(delete(table).where(table.c.id == row['id']))
    logger.info('student_deleted partition=%s student_id=%s', table.name, row['student_id'])
    return {
        'student_id': row['student_id'],
        'name': row['name'],
        'stream': row['stream'],
        'semester': row['semester'],
        'partition': table.name,
        'parent_phone': mask_phone(row.get('parent_phone')),
    }


def collect_stats(store: PartitionStore) -> dict:
    stats = {
        'students': {'total': 0, 'by_stream': {}, 'by_semester': {}},
        'subjects': {'total': 0, 'by_stream': {}, 'by_semester': {}},
        'partitions': [],
    }
    with store.engine.connect() as conn:
        for descriptor in store.registry:
            stats['students']['by_stream'][descriptor.display_name] = 0
            stats['subjects']['by_stream'][descriptor.display_name] = 0
            for sem in descriptor.allowed_semesters:
                counts = {}
                for kind, table in (
                    ('students', store.students(descriptor.display_name, sem, create=False)),
                    ('subjects', store.subjects(descriptor.display_name, sem, create=False)),
                ):
                    if table is None:
                        counts[kind] = 0
                        continue
                    counts[kind] = conn.execute(
                        select(func.count()).select_from(table).where(table.c.is_active.is_(True))
                    ).scalar_one()
                sem_key = f'sem{sem}'
                for kind in ('students', 'subjects'):
                    stats[kind]['total'] += counts[kind]
                    stats[kind]['by_stream'][descriptor.display_name] += counts[kind]
                    stats[kind]['by_semester'][sem_key] = stats[kind]['by_semester'].get(sem_key, 0) + counts[kind]
                if counts['students'] or counts['subjects']:
                    stats['partitions'].append({
                        'stream': descriptor.display_name,
                        'semester': sem,
                        'student_count': counts['students'],
                        'subject_count': counts['subjects'],
                    })
    return stats
