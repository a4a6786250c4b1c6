from datetime import date

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from college_attendance.db import get_db
from college_attendance.dependencies import get_dispatcher, get_partition_store
from college_attendance.request_context import EndpointNameRoute
from college_attendance.schemas import SendAbsenceMessagesRequest
from college_attendance.services import notification_service
from college_attendance.services.notification_service import NotificationDispatcher
from college_attendance.storage.partition_store import PartitionStore


router = APIRouter(prefix='/api', tags=['Notifications'], route_class=EndpointNameRoute)


def _send_response(result: dict) -> dict:
    if result['already_sent']:
        message = f"Messages already sent for {result['stream']} semester {result['semester']} on {result['date']}"
    else:
        summary = result['summary']
        message = f"Absence messages processed: {summary['messages_sent']} sent, {summary['messages_failed']} failed"
    return {'success': True, 'message': message, **result}


@router.get('/daily-absence-summary/{stream}/sem{semester}/{day}')
def daily_absence_summary(
    stream: str,
    semester: int,
    day: date,
    db: Session = Depends(get_db),
    store: PartitionStore = Depends(get_partition_store),
):
    return {'success': True, **notification_service.daily_absence_report(db, store, stream, semester, day)}


@router.post('/send-absence-messages/{stream}/sem{semester}/{day}')
def send_absence_messages(
    stream: str,
    semester: int,
    day: date,
    payload: SendAbsenceMessagesRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    force_resend = bool(payload and payload.force_resend)
    return _send_response(dispatcher.dispatch(db, stream, semester, day, force_resend=force_resend))


@router.post('/force-resend-messages/{stream}/sem{semester}/{day}')
def force_resend_messages(
    stream: str,
    semester: int,
    day: date,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _send_response(dispatcher.dispatch(db, stream, semester, day, force_resend=True))


@router.get('/message-history/{stream}/sem{semester}')
def message_history(
    stream: str,
    semester: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    store: PartitionStore = Depends(get_partition_store),
):
    return {'success': True, **notification_service.message_history(db, store, stream, semester, page=page, limit=limit)}
