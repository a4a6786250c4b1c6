from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from college_attendance.db import get_db
from college_attendance.models import TeacherSubjectStatus
from college_attendance.request_context import EndpointNameRoute
from college_attendance.schemas import (
    AttendanceQueueRequest,
    CompletedSessionRequest,
    TeacherSubjectCreateRequest,
    TeacherSubjectStatusRequest,
    TeacherSyncRequest,
)
from college_attendance.services import teacher_service


router = APIRouter(prefix='/api/teachers', tags=['Teachers'], route_class=EndpointNameRoute)


@router.post('/sync')
def sync_teacher(payload: TeacherSyncRequest, db: Session = Depends(get_db)):
    profile, created = teacher_service.sync_teacher(db, payload.external_uid, payload.email, payload.name)
    return {'success': True, 'created': created, 'teacher': teacher_service.profile_to_dict(profile)}


@router.get('/{uid}')
def get_teacher(uid: str, db: Session = Depends(get_db)):
    return {'success': True, 'teacher': teacher_service.profile_to_dict(teacher_service.get_teacher(db, uid))}


@router.post('/{uid}/subjects', status_code=201)
def add_subject(uid: str, payload: TeacherSubjectCreateRequest, db: Session = Depends(get_db)):
    row = teacher_service.add_subject(db, uid, payload.model_dump())
    return {'success': True, 'subject': teacher_service.subject_to_dict(row)}


@router.get('/{uid}/subjects')
def list_subjects(uid: str, status: TeacherSubjectStatus | None = None, db: Session = Depends(get_db)):
    rows = teacher_service.list_subjects(db, uid, status)
    return {'success': True, 'count': len(rows), 'subjects': [teacher_service.subject_to_dict(row) for row in rows]}


@router.delete('/{uid}/subjects/{subject_id}')
def delete_subject(uid: str, subject_id: int, db: Session = Depends(get_db)):
    teacher_service.delete_subject(db, uid, subject_id)
    return {'success': True, 'deleted': subject_id}


@router.put('/{uid}/subjects/{subject_id}/status')
def set_subject_status(uid: str, subject_id: int, payload: TeacherSubjectStatusRequest, db: Session = Depends(get_db)):
    row = teacher_service.set_subject_status(db, uid, subject_id, payload.status)
    return {'success': True, 'subject': teacher_service.subject_to_dict(row)}


@router.get('/{uid}/attendance-queue')
def get_attendance_queue(uid: str, db: Session = Depends(get_db)):
    profile = teacher_service.get_teacher(db, uid)
    return {
        'success': True,
        'queue': list(profile.attendance_queue or []),
        'last_queue_update': profile.last_queue_update,
    }


@router.put('/{uid}/attendance-queue')
def save_attendance_queue(uid: str, payload: AttendanceQueueRequest, db: Session = Depends(get_db)):
    profile = teacher_service.save_attendance_queue(db, uid, payload.queue)
    return {
        'success': True,
        'queue': list(profile.attendance_queue or []),
        'last_queue_update': profile.last_queue_update,
    }


@router.post('/{uid}/completed', status_code=201)
def record_completed(uid: str, payload: CompletedSessionRequest, db: Session = Depends(get_db)):
    profile = teacher_service.record_completed_session(db, uid, payload.model_dump())
    return {'success': True, 'completed': list(profile.completed_today or [])}


@router.get('/{uid}/completed')
def list_completed(uid: str, day: date | None = None, db: Session = Depends(get_db)):
    rows = teacher_service.completed_sessions(db, uid, day)
    return {'success': True, 'count': len(rows), 'completed': rows}
