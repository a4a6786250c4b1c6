from fastapi import APIRouter, Depends

from college_attendance.dependencies import get_partition_store
from college_attendance.request_context import EndpointNameRoute
from college_attendance.services import promotion_service
from college_attendance.storage.partition_store import PartitionStore


router = APIRouter(prefix='/api', tags=['Promotion'], route_class=EndpointNameRoute)


@router.get('/promotion-options')
def promotion_options(store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, **promotion_service.promotion_options(store)}


@router.get('/simple-promotion-preview/{stream}')
def promotion_preview(stream: str, store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, **promotion_service.promotion_preview(store, stream)}


@router.post('/simple-promotion/{stream}')
def simple_promotion(stream: str, store: PartitionStore = Depends(get_partition_store)):
    result = promotion_service.promote_stream(store, stream)
    return {
        'success': True,
        'message': (
            f"Promotion completed for {result['stream']}: "
            f"{result['total_promoted']} promoted, {result['total_graduated']} graduated"
        ),
        **result,
    }


@router.get('/stream-info/{stream}')
def stream_info(stream: str, store: PartitionStore = Depends(get_partition_store)):
    return {'success': True, **promotion_service.stream_info(store, stream)}
