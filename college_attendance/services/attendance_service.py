from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from college_attendance.core.time_provider import TimeProvider, default_time_provider, parse_day
from college_attendance.errors import (
    AttendanceApiError,
    DuplicateSession,
    IneligibleStudents,
    NoAttendanceData,
    SubjectNotFound,
    ValidationFailed,
)
from college_attendance.services.student_service import active_students
from college_attendance.services.subject_service import find_active_subject
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


logger = logging.getLogger(__name__)


def eligible_students(students: list[dict], subject: dict) -> list[dict]:
    """Students allowed to be marked present for `subject`.

    Core subjects admit every active student; language subjects only those
    whose language choice matches. Computed from current student rows.
    """
    if not subject.get('is_language_subject'):
        return list(students)
    language = subject.get('language_type')
    return [row for row in students if row.get('language_choice') == language]


def percentage(present: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(present / total * 100, 2)


def normalize_ids(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values or []:
        key = str(value or '').strip().upper()
        if key:
            seen.setdefault(key, None)
    return list(seen)


def public_session(row: dict) -> dict:
    return {
        'date': row['date'].isoformat(),
        'subject': row['subject'],
        'session_slot': row['session_slot'],
        'session_time': row.get('session_time'),
        'students_present': list(row.get('students_present') or []),
        'total_students': row.get('total_students', 0),
        'percentage': row.get('percentage', 0.0),
        'marked_by': row.get('marked_by'),
        'created_at': row.get('created_at'),
        'updated_at': row.get('updated_at'),
    }


def _session_where(table: Table, day: date, subject_name: str, slot: int):
    return (
        (table.c.date == day)
        & (table.c.subject == subject_name)
        & (table.c.session_slot == int(slot))
    )


def _load_context(store: PartitionStore, stream: str, semester: int, subject: str):
    subjects_table = store.subjects(stream, semester)
    students_table = store.students(stream, semester)
    with store.engine.connect() as conn:
        subject_row = find_active_subject(conn, subjects_table, subject)
        eligible = eligible_students(active_students(conn, students_table), subject_row)
    return subject_row, eligible


def _write_session(
    conn: Connection,
    table: Table,
    values: dict,
    *,
    overwrite: bool,
) -> bool:
    where = _session_where(table, values['date'], values['subject'], values['session_slot'])
    existing = conn.execute(select(table.c.id).where(where)).first()
    if existing is None:
        conn.execute(insert(table).values(**values))
        return False
    if not overwrite:
        raise DuplicateSession(
            'Attendance already taken for this subject, date and session',
            subject=values['subject'],
            date=values['date'].isoformat(),
            session_slot=values['session_slot'],
        )
    conn.execute(update(table).where(table.c.id == existing.id).values(**values))
    return True


def _session_values(
    subject_row: dict,
    day: date,
    present: list[str],
    eligible: list[dict],
    *,
    slot: int,
    session_time: str | None,
    marked_by: str | None,
    time_provider: TimeProvider,
) -> dict:
    return {
        'date': day,
        'subject': subject_row['subject_name'],
        'session_slot': int(slot),
        'session_time': session_time,
        'stream': subject_row['stream'],
        'semester': subject_row['semester'],
        'students_present': present,
        'eligible_students': [row['student_id'] for row in eligible],
        'total_students': len(eligible),
        'percentage': percentage(len(present), len(eligible)),
        'marked_by': marked_by,
        'updated_at': time_provider.naive_now(),
    }


def _reject_ineligible(present: list[str], eligible: list[dict], subject_row: dict) -> None:
    eligible_ids = {row['student_id'] for row in eligible}
    offenders = [student_id for student_id in present if student_id not in eligible_ids]
    if offenders:
        raise IneligibleStudents(
            f"{len(offenders)} student(s) are not eligible for {subject_row['subject_name']}",
            subject=subject_row['subject_name'],
            ineligible_students=offenders,
        )


def mark_attendance(
    store: PartitionStore,
    stream: str,
    semester: int,
    subject: str,
    day: date | str,
    students_present: list[str],
    *,
    force_overwrite: bool = False,
    session_slot: int = 1,
    session_time: str | None = None,
    marked_by: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    descriptor = store.registry.validate(stream, semester)
    day = parse_day(day)
    present = normalize_ids(students_present)

    subject_row, eligible = _load_context(store, descriptor.display_name, semester, subject)
    _reject_ineligible(present, eligible, subject_row)

    table = store.attendance(descriptor.display_name, semester, subject_row['subject_name'])
    values = _session_values(
        subject_row,
        day,
        present,
        eligible,
        slot=session_slot,
        session_time=session_time,
        marked_by=marked_by,
        time_provider=time_provider,
    )
    try:
        with store.engine.begin() as conn:
            overwritten = _write_session(conn, table, values, overwrite=force_overwrite)
    except IntegrityError as exc:
        # Another request inserted the same session between our read and write.
        if not force_overwrite:
            raise DuplicateSession(
                'Attendance already taken for this subject, date and session',
                subject=values['subject'],
                date=day.isoformat(),
                session_slot=values['session_slot'],
            ) from exc
        with store.engine.begin() as conn:
            overwritten = _write_session(conn, table, values, overwrite=True)

    with store.engine.connect() as conn:
        stored = row_to_dict(conn.execute(
            select(table).where(_session_where(table, day, values['subject'], values['session_slot']))
        ).first())

    present_set = set(present)
    absent = [row for row in eligible if row['student_id'] not in present_set]
    with_phone = sum(1 for row in absent if row.get('parent_phone'))
    logger.info(
        'attendance_%s partition=%s date=%s slot=%s present=%s eligible=%s',
        'overwritten' if overwritten else 'marked',
        table.name,
        day.isoformat(),
        values['session_slot'],
        len(present),
        len(eligible),
    )
    return {
        'is_overwrite': overwritten,
        'partition': table.name,
        'record': public_session(stored),
        'summary': {
            'total_students': len(eligible),
            'present_students': len(present),
            'absent_students': len(absent),
            'absent_with_phone': with_phone,
            'absent_without_phone': len(absent) - with_phone,
            'percentage': values['percentage'],
            'absent_students_list': [
                {'student_id': row['student_id'], 'name': row['name'], 'has_phone': bool(row.get('parent_phone'))}
                for row in absent
            ],
        },
    }


def check_attendance(
    store: PartitionStore,
    stream: str,
    semester: int,
    subject: str,
    day: date | str,
    session_slot: int | None = None,
) -> dict:
    descriptor = store.registry.validate(stream, semester)
    day = parse_day(day)
    subjects_table = store.subjects(descriptor.display_name, semester, create=False)
    if subjects_table is None:
        raise SubjectNotFound(f'Subject "{subject}" not found', subject=subject)
    with store.engine.connect() as conn:
        subject_row = find_active_subject(conn, subjects_table, subject)
    table = store.attendance(descriptor.display_name, semester, subject_row['subject_name'], create=False)
    sessions: list[dict] = []
    if table is not None:
        query = select(table).where(table.c.date == day, table.c.subject == subject_row['subject_name'])
        if session_slot is not None:
            query = query.where(table.c.session_slot == int(session_slot))
        with store.engine.connect() as conn:
            rows = conn.execute(query.order_by(table.c.session_slot.asc())).all()
        sessions = [public_session(row_to_dict(row)) for row in rows]
    return {
        'exists': bool(sessions),
        'date': day.isoformat(),
        'subject': subject_row['subject_name'],
        'stream': descriptor.display_name,
        'semester': int(semester),
        'record_count': len(sessions),
        'sessions': sessions,
    }


def attendance_register(store: PartitionStore, stream: str, semester: int, subject: str) -> dict:
    descriptor = store.registry.validate(stream, semester)
    subject_row, eligible = _load_context(store, descriptor.display_name, semester, subject)
    if not eligible:
        raise NoAttendanceData(
            'No students found for this stream and semester',
            stream=descriptor.display_name,
            semester=int(semester),
        )
    table = store.attendance(descriptor.display_name, semester, subject_row['subject_name'])
    with store.engine.connect() as conn:
        rows = conn.execute(
            select(table)
            .where(table.c.subject == subject_row['subject_name'])
            .order_by(table.c.date.asc(), table.c.session_slot.asc())
        ).all()

    attendance_map: dict[str, list[dict]] = {}
    for row in rows:
        data = row_to_dict(row)
        attendance_map.setdefault(data['date'].isoformat(), []).append({
            'session_slot': data['session_slot'],
            'session_time': data.get('session_time'),
            'students_present': list(data.get('students_present') or []),
        })
    return {
        'subject': subject_row['subject_name'],
        'stream': descriptor.display_name,
        'semester': int(semester),
        'students': [
            {
                'student_id': row['student_id'],
                'name': row['name'],
                'migration_generation': row.get('migration_generation', 0),
            }
            for row in eligible
        ],
        'attendance_map': attendance_map,
    }


def update_attendance_register(
    store: PartitionStore,
    stream: str,
    semester: int,
    subject: str,
    attendance_map: dict[str, list[str]],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    if not attendance_map:
        raise ValidationFailed('No attendance data provided', field='attendance_map')
    descriptor = store.registry.validate(stream, semester)
    subject_row, eligible = _load_context(store, descriptor.display_name, semester, subject)
    table = store.attendance(descriptor.display_name, semester, subject_row['subject_name'])

    results = []
    updated = 0
    for raw_day, ids in attendance_map.items():
        try:
            day = parse_day(raw_day)
            present = normalize_ids(ids)
            _reject_ineligible(present, eligible, subject_row)
            values = _session_values(
                subject_row,
                day,
                present,
                eligible,
                slot=1,
                session_time=None,
                marked_by=None,
                time_provider=time_provider,
            )
            with store.engine.begin() as conn:
                _write_session(conn, table, values, overwrite=True)
        except ValidationFailed as exc:
            payload = {'date': raw_day, 'success': False, 'error': exc.message}
            if isinstance(exc, IneligibleStudents):
                payload['ineligible_students'] = exc.details.get('ineligible_students', [])
            results.append(payload)
            continue
        except (AttendanceApiError, IntegrityError) as exc:
            logger.warning('attendance_register_update_failed partition=%s date=%s error=%s', table.name, raw_day, exc)
            results.append({'date': raw_day, 'success': False, 'error': str(exc)})
            continue
        updated += 1
        results.append({'date': day.isoformat(), 'success': True, 'students_present': len(present)})
    logger.info('attendance_register_updated partition=%s updated=%s total=%s', table.name, updated, len(attendance_map))
    return {
        'subject': subject_row['subject_name'],
        'stream': descriptor.display_name,
        'semester': int(semester),
        'updated_dates': updated,
        'failed_dates': len(attendance_map) - updated,
        'results': results,
    }
