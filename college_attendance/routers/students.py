from typing import Literal

from fastapi import APIRouter, Depends, Query

from college_attendance.dependencies import get_partition_store
from college_attendance.request_context import EndpointNameRoute
from college_attendance.schemas import (
    BulkStudentUploadRequest,
    LegacyStudentCreateRequest,
    StudentCreateRequest,
    StudentUpdateRequest,
)
from college_attendance.services import student_service
from college_attendance.storage.partition_store import PartitionStore


router = APIRouter(prefix='/api', tags=['Students'], route_class=EndpointNameRoute)


@router.get('/students/all')
def list_all_students(
    stream: str | None = None,
    semester: int | None = Query(default=None, ge=1, le=12),
    is_active: Literal['true', 'false', 'all'] = 'true',
    academic_year: int | None = None,
    search: str = '',
    sort_by: str = 'name',
    sort_order: Literal['asc', 'desc'] = 'asc',
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=5000, ge=1),
    store: PartitionStore = Depends(get_partition_store),
):
    result = student_service.list_all_students(
        store,
        stream=stream,
        semester=semester,
        is_active=is_active,
        academic_year=academic_year,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {'success': True, **result}


@router.get('/students/find/{student_id}')
def find_student(student_id: str, store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, 'student': student_service.get_student(store, student_id)}


@router.post('/students/{stream}/sem{semester}', status_code=201)
def create_student(
    stream: str,
    semester: int,
    payload: StudentCreateRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    student = student_service.create_student(store, stream, semester, payload.model_dump())
    return {
        'success': True,
        'message': f"Student {student['student_id']} added successfully",
        'student': student,
    }


@router.post('/add-student/{stream}/sem{semester}', status_code=201)
def add_student(
    stream: str,
    semester: int,
    payload: LegacyStudentCreateRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    student = student_service.create_student(store, stream, semester, payload.model_dump(), require_phone=True)
    return {
        'success': True,
        'message': f"Student {student['student_id']} added successfully",
        'student': student,
    }


@router.post('/bulk-upload-students/{stream}/sem{semester}')
def bulk_upload_students(
    stream: str,
    semester: int,
    payload: BulkStudentUploadRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    result = student_service.bulk_upload_students(
        store,
        stream,
        semester,
        [item.model_dump() for item in payload.students],
    )
    return {
        'success': True,
        'message': f"Bulk upload completed: {result['added']}/{result['total']} students added",
        **result,
    }


@router.get('/students/{stream}/sem{semester}')
def list_students(stream: str, semester: int, store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, **student_service.list_students(store, stream, semester)}


@router.put('/students/{student_id}')
def update_student(
    student_id: str,
    payload: StudentUpdateRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    student = student_service.update_student(store, student_id, payload.model_dump(exclude_unset=True))
    return {'success': True, 'message': f"Student {student['student_id']} updated successfully", 'student': student}


@router.delete('/students/{student_id}')
def delete_student(student_id: str, store: PartitionStore = Depends(get_partition_store)):
    deleted = student_service.delete_student(store, student_id)
    return {'success': True, 'message': f"Student {deleted['student_id']} deleted successfully", 'deleted_student': deleted}
