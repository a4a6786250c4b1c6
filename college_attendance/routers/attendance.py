from datetime import date

from fastapi import APIRouter, Depends, Query

from college_attendance.dependencies import get_partition_store
from college_attendance.request_context import EndpointNameRoute
from college_attendance.schemas import AttendanceMarkRequest, AttendanceRegisterUpdateRequest
from college_attendance.services import attendance_service
from college_attendance.storage.partition_store import PartitionStore


router = APIRouter(prefix='/api', tags=['Attendance'], route_class=EndpointNameRoute)


@router.post('/attendance/{stream}/sem{semester}/{subject}')
def mark_attendance(
    stream: str,
    semester: int,
    subject: str,
    payload: AttendanceMarkRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    result = attendance_service.mark_attendance(
        store,
        stream,
        semester,
        subject,
        payload.date,
        payload.students_present,
        force_overwrite=payload.force_overwrite,
        session_slot=payload.session_slot,
        session_time=payload.session_time,
        marked_by=payload.marked_by,
    )
    verb = 'updated' if result['is_overwrite'] else 'marked'
    return {
        'success': True,
        'message': f'Attendance {verb} successfully. Send absence messages separately when ready.',
        **result,
    }


@router.get('/check-attendance/{stream}/sem{semester}/{subject}')
def check_attendance(
    stream: str,
    semester: int,
    subject: str,
    date: date,
    session_slot: int | None = Query(default=None, ge=1, le=12),
    store: PartitionStore = Depends(get_partition_store),
):
    return attendance_service.check_attendance(store, stream, semester, subject, date, session_slot)


@router.get('/attendance-register/{stream}/sem{semester}/{subject}')
def attendance_register(
    stream: str,
    semester: int,
    subject: str,
    store: PartitionStore = Depends(get_partition_store),
):
    return {'success': True, **attendance_service.attendance_register(store, stream, semester, subject)}


@router.post('/update-attendance/{stream}/sem{semester}/{subject}')
def update_attendance(
    stream: str,
    semester: int,
    subject: str,
    payload: AttendanceRegisterUpdateRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    result = attendance_service.update_attendance_register(store, stream, semester, subject, payload.attendance_map)
    return {
        'success': True,
        'message': f"Attendance updated for {result['updated_dates']} date(s)",
        **result,
    }
