from typing import Literal

from fastapi import APIRouter, Depends, Query

from college_attendance.core.streams import SubjectType
from college_attendance.dependencies import get_partition_store
from college_attendance.request_context import EndpointNameRoute
from college_attendance.schemas import SubjectCreateRequest, SubjectSetupRequest
from college_attendance.services import subject_service
from college_attendance.storage.partition_store import PartitionStore


router = APIRouter(prefix='/api', tags=['Subjects'], route_class=EndpointNameRoute)


@router.get('/subjects/all')
def list_all_subjects(
    stream: str | None = None,
    semester: int | None = Query(default=None, ge=1, le=12),
    is_active: Literal['true', 'false', 'all'] = 'true',
    subject_type: SubjectType | None = None,
    search: str = '',
    store: PartitionStore = Depends(get_partition_store),
):
    result = subject_service.list_all_subjects(
        store,
        stream=stream,
        semester=semester,
        is_active=is_active,
        subject_type=subject_type,
        search=search,
    )
    return {'success': True, **result}


@router.post('/subjects/{stream}/sem{semester}', status_code=201)
def create_subject(
    stream: str,
    semester: int,
    payload: SubjectCreateRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    subject = subject_service.create_subject(store, stream, semester, payload.model_dump())
    return {
        'success': True,
        'message': f"Subject \"{subject['subject_name']}\" created successfully",
        'subject': subject,
    }


@router.post('/setup-subjects/{stream}/sem{semester}')
def setup_subjects(
    stream: str,
    semester: int,
    payload: SubjectSetupRequest,
    store: PartitionStore = Depends(get_partition_store),
):
    result = subject_service.setup_subjects(store, stream, semester, payload.subjects)
    return {
        'success': True,
        'message': f"Subjects setup completed: {result['added']}/{result['total']} subjects added",
        **result,
    }


@router.get('/subjects/{stream}/sem{semester}')
def list_subjects(stream: str, semester: int, store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, **subject_service.list_subjects(store, stream, semester)}
