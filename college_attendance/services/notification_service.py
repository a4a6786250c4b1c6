from __future__ import annotations

import logging
import time
from datetime import date
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from college_attendance.communication.base import MessageSender, SendResult
from college_attendance.communication.templates import TemplateEngine, template_engine
from college_attendance.config import settings
from college_attendance.core.phone import mask_phone
from college_attendance.core.time_provider import TimeProvider, default_time_provider, display_day, parse_day
from college_attendance.errors import NoAttendanceData
from college_attendance.models import NotificationLog, SentBy
from college_attendance.services.absence_service import DailyAbsence, StudentAbsence, summarize
from college_attendance.storage.partition_store import PartitionStore


logger = logging.getLogger(__name__)


def get_log(db: Session, day: date, stream: str, semester: int) -> NotificationLog | None:
    return (
        db.query(NotificationLog)
        .filter(
            NotificationLog.date == day.isoformat(),
            NotificationLog.stream == stream,
            NotificationLog.semester == int(semester),
        )
        .first()
    )


def log_to_dict(row: NotificationLog) -> dict:
    return {
        'date': row.date,
        'stream': row.stream,
        'semester': row.semester,
        'messages_sent': row.messages_sent,
        'messages_failed': row.messages_failed,
        'total_students_notified': row.total_students_notified,
        'full_day_absent_count': row.full_day_absent_count,
        'partial_day_absent_count': row.partial_day_absent_count,
        'subjects_included': list(row.subjects_included or []),
        'sent_by': row.sent_by,
        'sent_at': row.sent_at,
    }


def message_status(row: NotificationLog | None) -> dict:
    if row is None or row.messages_sent <= 0:
        return {'already_sent': False, 'note': 'No messages sent yet for this date.'}
    status = {'already_sent': True}
    status.update(log_to_dict(row))
    status['note'] = 'Messages have already been sent for this date. Use force_resend to send again.'
    return status


def _apply_log_values(row: NotificationLog, values: dict) -> None:
    for key, value in values.items():
        setattr(row, key, value)


def upsert_log(db: Session, day: date, stream: str, semester: int, values: dict) -> NotificationLog:
    row = get_log(db, day, stream, semester)
    if row is None:
        row = NotificationLog(date=day.isoformat(), stream=stream, semester=int(semester))
        _apply_log_values(row, values)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent dispatch created the row first.
            db.rollback()
            row = get_log(db, day, stream, semester)
            _apply_log_values(row, values)
            db.commit()
    else:
        _apply_log_values(row, values)
        db.commit()
    db.refresh(row)
    return row


class NotificationDispatcher:
    """Sends consolidated absence messages for one (stream, semester, day).

    A log row with messages_sent > 0 short-circuits the dispatch unless the
    caller forces a resend. Sends go out in batches with a pause between
    them; a failed send is recorded and the rest of the batch continues.
    """

    def __init__(
        self,
        store: PartitionStore,
        sender: MessageSender,
        *,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        templates: TemplateEngine = template_engine,
        time_provider: TimeProvider = default_time_provider,
        institution_name: str | None = None,
    ) -> None:
        self.store = store
        self.sender = sender
        self.batch_size = max(1, batch_size or settings.notification_batch_size)
        self.batch_delay_seconds = (
            settings.notification_batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )
        self.sleep = sleep
        self.templates = templates
        self.time_provider = time_provider
        self.institution_name = institution_name or settings.institution_name

    def render(self, summary: DailyAbsence, student: StudentAbsence) -> str:
        return self.templates.render(student.message_type, {
            'student_name': student.name,
            'student_id': student.student_id,
            'date': display_day(summary.day),
            'stream': summary.stream,
            'semester': summary.semester,
            'absent_subjects': student.absent_subjects,
            'institution': self.institution_name,
        })

    def _send_one(self, summary: DailyAbsence, student: StudentAbsence) -> dict:
        try:
            result = self.sender.send(student.parent_phone, self.render(summary, student))
        except Exception as exc:
            logger.exception('absence_message_error student_id=%s', student.student_id)
            result = SendResult(success=False, error=str(exc) or exc.__class__.__name__)
        if not result.success:
            logger.warning(
                'absence_message_failed student_id=%s to=%s error=%s',
                student.student_id,
                mask_phone(student.parent_phone),
                result.error,
            )
        return {
            'student_id': student.student_id,
            'student_name': student.name,
            'parent_phone': mask_phone(student.parent_phone),
            'success': result.success,
            'message_id': result.message_id,
            'error': result.error,
            'message_type': student.message_type,
            'absent_subjects': list(student.absent_subjects),
        }

    def _send_all(self, summary: DailyAbsence, recipients: list[StudentAbsence]) -> list[dict]:
        results: list[dict] = []
        for start in range(0, len(recipients), self.batch_size):
            if start and self.batch_delay_seconds > 0:
                self.sleep(self.batch_delay_seconds)
            batch = recipients[start:start + self.batch_size]
            batch_results = [self._send_one(summary, student) for student in batch]
            logger.info(
                'absence_batch_sent stream=%s semester=%s date=%s batch=%s sent=%s failed=%s',
                summary.stream,
                summary.semester,
                summary.day.isoformat(),
                start // self.batch_size + 1,
                sum(1 for item in batch_results if item['success']),
                sum(1 for item in batch_results if not item['success']),
            )
            results.extend(batch_results)
        return results

    def dispatch(
        self,
        db: Session,
        stream: str,
        semester: int,
        day: date | str,
        *,
        force_resend: bool = False,
    ) -> dict:
        descriptor = self.store.registry.validate(stream, semester)
        day = parse_day(day)
        sent_by = SentBy.MANUAL_FORCE if force_resend else SentBy.MANUAL

        if not force_resend:
            existing = get_log(db, day, descriptor.display_name, semester)
            if existing is not None and existing.messages_sent > 0:
                logger.info(
                    'absence_dispatch_skipped stream=%s semester=%s date=%s reason=already_sent',
                    descriptor.display_name,
                    semester,
                    day.isoformat(),
                )
                return {
                    'already_sent': True,
                    'date': display_day(day),
                    'stream': descriptor.display_name,
                    'semester': int(semester),
                    'previous_send': log_to_dict(existing),
                    'summary': {
                        'students_to_notify': 0,
                        'messages_sent': 0,
                        'messages_failed': 0,
                        'already_processed': True,
                    },
                }

        summary = summarize(self.store, descriptor.display_name, semester, day)
        if not summary.subjects_with_attendance:
            raise NoAttendanceData(
                f'No attendance records found for {day.isoformat()}. Please mark attendance first.',
                stream=descriptor.display_name,
                semester=int(semester),
                date=day.isoformat(),
            )

        absentees = summary.absentees
        recipients = [student for student in absentees if student.parent_phone]
        logger.info(
            'absence_dispatch_started stream=%s semester=%s date=%s recipients=%s force=%s',
            descriptor.display_name,
            semester,
            day.isoformat(),
            len(recipients),
            force_resend,
        )
        results = self._send_all(summary, recipients)

        sent = sum(1 for item in results if item['success'])
        full_day = sum(1 for item in results if item['success'] and item['message_type'] == 'full_day')
        partial_day = sum(1 for item in results if item['success'] and item['message_type'] == 'partial_day')
        upsert_log(db, day, descriptor.display_name, semester, {
            'messages_sent': sent,
            'messages_failed': len(results) - sent,
            'total_students_notified': len(recipients),
            'full_day_absent_count': full_day,
            'partial_day_absent_count': partial_day,
            'subjects_included': list(summary.subjects_with_attendance),
            'results': [
                {key: item[key] for key in ('student_id', 'student_name', 'success', 'message_type', 'error')}
                for item in results
            ],
            'sent_by': sent_by.value,
            'sent_at': self.time_provider.naive_now(),
        })
        logger.info(
            'absence_dispatch_finished stream=%s semester=%s date=%s sent=%s failed=%s',
            descriptor.display_name,
            semester,
            day.isoformat(),
            sent,
            len(results) - sent,
        )
        return {
            'already_sent': False,
            'date': display_day(day),
            'stream': descriptor.display_name,
            'semester': int(semester),
            'summary': {
                'total_students': len(summary.students),
                'subjects_with_attendance': len(summary.subjects_with_attendance),
                'students_to_notify': len(recipients),
                'students_without_phone': len(absentees) - len(recipients),
                'messages_sent': sent,
                'messages_failed': len(results) - sent,
                'full_day_absent': full_day,
                'partial_day_absent': partial_day,
                'is_force_resend': force_resend,
            },
            'subjects_included': list(summary.subjects_with_attendance),
            'results': results,
            'trigger_type': sent_by.value,
        }


def daily_absence_report(db: Session, store: PartitionStore, stream: str, semester: int, day: date | str) -> dict:
    summary = summarize(store, stream, semester, day)
    return {
        'date': display_day(summary.day),
        'stream': summary.stream,
        'semester': summary.semester,
        'summary': summary.counts(),
        'absence_summary': [student.as_dict() for student in summary.students],
        'subjects': summary.subjects,
        'subjects_with_attendance': summary.subjects_with_attendance,
        'message_status': message_status(get_log(db, summary.day, summary.stream, summary.semester)),
    }


def message_history(db: Session, store: PartitionStore, stream: str, semester: int, *, page: int = 1, limit: int = 10) -> dict:
    descriptor = store.registry.validate(stream, semester)
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    query = db.query(NotificationLog).filter(
        NotificationLog.stream == descriptor.display_name,
        NotificationLog.semester == int(semester),
    )
    total = query.count()
    rows = (
        query.order_by(NotificationLog.date.desc(), NotificationLog.sent_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'stream': descriptor.display_name,
        'semester': int(semester),
        'history': [log_to_dict(row) for row in rows],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
    }
