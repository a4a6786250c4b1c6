import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from college_attendance.config import settings
from college_attendance.core.partitions import resolve_partition
from college_attendance.core.streams import EntityKind
from college_attendance.dependencies import get_message_sender, get_partition_store
from college_attendance.communication.base import MessageSender
from college_attendance.request_context import EndpointNameRoute
from college_attendance.services import student_service
from college_attendance.storage.partition_store import PartitionStore


logger = logging.getLogger(__name__)

router = APIRouter(tags=['System'], route_class=EndpointNameRoute)


@router.get('/')
def root():
    return {
        'service': settings.app_name,
        'status': 'ok',
        'docs': '/docs',
        'health': '/api/health',
    }


@router.get('/api/health')
def health(
    store: PartitionStore = Depends(get_partition_store),
    sender: MessageSender = Depends(get_message_sender),
):
    payload = {
        'service': settings.app_name,
        'environment': settings.app_env,
        'streams': len(store.registry),
        'cached_partitions': len(store),
        'messaging': sender.name,
    }
    try:
        with store.engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        logger.error('health_db_unreachable error=%s', exc)
        return JSONResponse(
            status_code=503,
            content={'success': False, 'status': 'unhealthy', 'database': 'unreachable', **payload},
        )
    return {'success': True, 'status': 'healthy', 'database': 'connected', **payload}


@router.get('/api/config/streams')
def config_streams(store: PartitionStore = Depends(get_partition_store)):
    streams = []
    for descriptor in store.registry:
        first = descriptor.allowed_semesters[0]
        info = descriptor.as_dict()
        info['example_partitions'] = {
            kind.value: resolve_partition(descriptor.display_name, first, kind, registry=store.registry)
            for kind in (EntityKind.STUDENTS, EntityKind.SUBJECTS)
        }
        info['example_partitions']['attendance'] = resolve_partition(
            descriptor.display_name, first, EntityKind.ATTENDANCE, 'Mathematics', registry=store.registry
        )
        streams.append(info)
    return {'success': True, 'streams': streams, 'count': len(streams)}


@router.get('/api/stats')
def stats(store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, 'stats': student_service.collect_stats(store)}
