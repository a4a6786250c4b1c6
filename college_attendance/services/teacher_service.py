from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from college_attendance.core.streams import StreamRegistry, stream_registry
from college_attendance.core.time_provider import TimeProvider, default_time_provider
from college_attendance.errors import DuplicateSubject, DuplicateTeacher, SubjectNotFound, TeacherNotFound
from college_attendance.models import TeacherProfile, TeacherSubject, TeacherSubjectStatus
from college_attendance.services.student_service import normalize_student_id


logger = logging.getLogger(__name__)


def subject_to_dict(row: TeacherSubject) -> dict:
    students = list(row.students or [])
    return {
        'id': row.id,
        'subject_name': row.subject_name,
        'subject_code': row.subject_code,
        'stream': row.stream,
        'semester': row.semester,
        'status': row.status,
        'student_count': len(students),
        'students': students,
        'created_at': row.created_at,
        'updated_at': row.updated_at,
    }


def profile_to_dict(profile: TeacherProfile) -> dict:
    return {
        'external_uid': profile.external_uid,
        'email': profile.email,
        'name': profile.name,
        'subjects': [subject_to_dict(row) for row in profile.subjects],
        'attendance_queue': list(profile.attendance_queue or []),
        'completed_today': list(profile.completed_today or []),
        'last_queue_update': profile.last_queue_update,
        'created_at': profile.created_at,
    }


def get_teacher(db: Session, external_uid: str) -> TeacherProfile:
    profile = db.query(TeacherProfile).filter(TeacherProfile.external_uid == external_uid).first()
    if profile is None:
        raise TeacherNotFound(f'Teacher {external_uid} not found', external_uid=external_uid)
    return profile


def sync_teacher(db: Session, external_uid: str, email: str, name: str) -> tuple[TeacherProfile, bool]:
    email = email.strip().lower()
    profile = db.query(TeacherProfile).filter(TeacherProfile.external_uid == external_uid).first()
    if profile is None:
        profile = db.query(TeacherProfile).filter(TeacherProfile.email == email).first()
    created = profile is None
    if created:
        profile = TeacherProfile(external_uid=external_uid, email=email, name=name.strip())
        db.add(profile)
    else:
        profile.external_uid = external_uid
        profile.email = email
        profile.name = name.strip()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateTeacher(
            f'Email {email} already belongs to another teacher profile',
            external_uid=external_uid,
            email=email,
        ) from exc
    db.refresh(profile)
    logger.info('teacher_synced uid=%s created=%s', external_uid, created)
    return profile, created


def add_subject(
    db: Session,
    external_uid: str,
    payload: dict[str, Any],
    *,
    registry: StreamRegistry = stream_registry,
) -> TeacherSubject:
    profile = get_teacher(db, external_uid)
    descriptor = registry.validate(payload['stream'], payload['semester'])
    students = []
    for item in payload.get('students') or []:
        students.append({
            'student_id': normalize_student_id(item.get('student_id')),
            'name': str(item.get('name') or '').strip(),
            'phone': str(item.get('phone') or '').strip(),
        })
    row = TeacherSubject(
        teacher_id=profile.id,
        subject_name=str(payload['subject_name']).strip().upper(),
        subject_code=str(payload['subject_code']).strip().upper(),
        stream=descriptor.display_name,
        semester=int(payload['semester']),
        status=TeacherSubjectStatus.ACTIVE.value,
        students=students,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateSubject(
            f'Subject {row.subject_code} is already in this library for {descriptor.display_name} semester {row.semester}',
            subject_code=row.subject_code,
        ) from exc
    db.refresh(row)
    logger.info('teacher_subject_added uid=%s code=%s students=%s', external_uid, row.subject_code, len(students))
    return row


def list_subjects(db: Session, external_uid: str, status: TeacherSubjectStatus | None = None) -> list[TeacherSubject]:
    profile = get_teacher(db, external_uid)
    query = db.query(TeacherSubject).filter(TeacherSubject.teacher_id == profile.id)
    if status is not None:
        query = query.filter(TeacherSubject.status == TeacherSubjectStatus(status).value)
    return query.order_by(TeacherSubject.id.asc()).all()


def _get_subject(db: Session, profile: TeacherProfile, subject_id: int) -> TeacherSubject:
    row = (
        db.query(TeacherSubject)
        .filter(TeacherSubject.id == subject_id, TeacherSubject.teacher_id == profile.id)
        .first()
    )
    if row is None:
        raise SubjectNotFound(f'Subject {subject_id} not found in library', subject_id=subject_id)
    return row


def delete_subject(db: Session, external_uid: str, subject_id: int) -> None:
    profile = get_teacher(db, external_uid)
    row = _get_subject(db, profile, subject_id)
    db.delete(row)
    db.commit()
    logger.info('teacher_subject_deleted uid=%s subject_id=%s', external_uid, subject_id)


def set_subject_status(db: Session, external_uid: str, subject_id: int, status: TeacherSubjectStatus) -> TeacherSubject:
    profile = get_teacher(db, external_uid)
    row = _get_subject(db, profile, subject_id)
    row.status = TeacherSubjectStatus(status).value
    db.commit()
    db.refresh(row)
    return row


def save_attendance_queue(
    db: Session,
    external_uid: str,
    queue: list[dict],
    *,
    time_provider: TimeProvider = default_time_provider,
) -> TeacherProfile:
    profile = get_teacher(db, external_uid)
    profile.attendance_queue = list(queue)
    profile.last_queue_update = time_provider.naive_now()
    db.commit()
    db.refresh(profile)
    return profile


def record_completed_session(
    db: Session,
    external_uid: str,
    entry: dict[str, Any],
    *,
    registry: StreamRegistry = stream_registry,
    time_provider: TimeProvider = default_time_provider,
) -> TeacherProfile:
    profile = get_teacher(db, external_uid)
    descriptor = registry.validate(entry['stream'], entry['semester'])
    record = {
        'subject': str(entry['subject']).strip().upper(),
        'stream': descriptor.display_name,
        'semester': int(entry['semester']),
        'date': entry['date'].isoformat() if isinstance(entry['date'], date) else str(entry['date']),
        'session_slot': int(entry.get('session_slot') or 1),
        'present_count': int(entry.get('present_count') or 0),
        'total_students': int(entry.get('total_students') or 0),
        'completed_at': time_provider.naive_now().isoformat(),
    }
    # Reassign so the JSON column is flagged dirty.
    profile.completed_today = [*(profile.completed_today or []), record]
    db.commit()
    db.refresh(profile)
    return profile


def completed_sessions(db: Session, external_uid: str, day: date | None = None) -> list[dict]:
    profile = get_teacher(db, external_uid)
    rows = list(profile.completed_today or [])
    if day is not None:
        rows = [row for row in rows if row.get('date') == day.isoformat()]
    return rows
