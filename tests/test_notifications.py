import tempfile
import unittest
from datetime import date
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from college_attendance.communication.base import MessageSender, SendResult
from college_attendance.db import Base
from college_attendance.errors import NoAttendanceData
from college_attendance.models import NotificationLog
from college_attendance.services import attendance_service, student_service, subject_service
from college_attendance.services.absence_service import summarize
from college_attendance.services.notification_service import (
    NotificationDispatcher,
    daily_absence_report,
    message_history,
)
from college_attendance.storage.partition_store import PartitionStore


DAY = date(2026, 7, 14)


class FakeSender(MessageSender):
    name = 'fake'

    def __init__(self, failing_phones=(), raising_phones=()):
        self.calls = []
        self.failing_phones = set(failing_phones)
        self.raising_phones = set(raising_phones)

    def send(self, phone, body):
        self.calls.append((phone, body))
        if phone in self.raising_phones:
            raise RuntimeError('provider exploded')
        if phone in self.failing_phones:
            return SendResult(success=False, error='provider_rejected')
        return SendResult(success=True, message_id=f'SM{len(self.calls)}')

    def health_check(self):
        return True, 'fake'


class NotificationTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_notifications.db'
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.session_factory()
        self.store = PartitionStore(self.engine)
        self.sleeps = []

        for student_id, name, language, phone in (
            ('S1', 'Anil', 'KANNADA', '9876500001'),
            ('S2', 'Bhavya', 'HINDI', '9876500002'),
            ('S3', 'Chetan', 'KANNADA', '9876500003'),
            ('S4', 'Deepa', 'HINDI', None),
        ):
            student_service.create_student(self.store, 'BCA', 1, {
                'student_id': student_id,
                'name': name,
                'language_choice': language,
                'parent_phone': phone,
            })
        subject_service.create_subject(self.store, 'BCA', 1, {'subject_name': 'Mathematics'})
        subject_service.create_subject(self.store, 'BCA', 1, {'subject_name': 'Physics'})
        subject_service.create_subject(self.store, 'BCA', 1, {
            'subject_name': 'Kannada',
            'subject_type': 'LANGUAGE',
            'language_type': 'KANNADA',
        })

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _dispatcher(self, sender, batch_size=2):
        return NotificationDispatcher(
            self.store,
            sender,
            batch_size=batch_size,
            batch_delay_seconds=1.5,
            sleep=self.sleeps.append,
            institution_name='Test College',
        )

    def _mark_day(self):
        # S1 present everywhere; S2 misses Physics; S3 misses everything; S4 misses Maths.
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Mathematics', DAY, ['S1', 'S2'])
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Physics', DAY, ['S1', 'S4'])
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Kannada', DAY, ['S1'])

    def test_summary_applies_language_eligibility(self):
        self._mark_day()
        summary = summarize(self.store, 'BCA', 1, DAY)
        by_id = {student.student_id: student for student in summary.students}

        self.assertEqual(by_id['S1'].message_type, 'present')
        self.assertEqual(by_id['S2'].absent_subjects, ['PHYSICS'])
        self.assertEqual(by_id['S2'].applicable_subjects, 2)
        self.assertEqual(by_id['S2'].message_type, 'partial_day')
        self.assertTrue(by_id['S3'].is_full_day_absent)
        self.assertEqual(by_id['S3'].applicable_subjects, 3)
        self.assertEqual(by_id['S4'].absent_subjects, ['MATHEMATICS'])
        self.assertFalse(by_id['S4'].will_receive_message)

    def test_absent_from_any_session_counts_as_absent(self):
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Mathematics', DAY, ['S1', 'S2'], session_slot=1)
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Mathematics', DAY, ['S1'], session_slot=2)
        summary = summarize(self.store, 'BCA', 1, DAY)
        by_id = {student.student_id: student for student in summary.students}
        self.assertEqual(by_id['S1'].absent_subjects, [])
        self.assertEqual(by_id['S2'].absent_subjects, ['MATHEMATICS'])
        self.assertTrue(by_id['S2'].is_full_day_absent)

    def test_no_recorded_subjects_means_nobody_is_full_day_absent(self):
        summary = summarize(self.store, 'BCA', 1, DAY)
        self.assertEqual(summary.subjects_with_attendance, [])
        self.assertFalse(any(student.is_full_day_absent for student in summary.students))

    def test_dispatch_sends_templates_and_logs(self):
        self._mark_day()
        sender = FakeSender()
        result = self._dispatcher(sender).dispatch(self.db, 'BCA', 1, DAY)

        self.assertFalse(result['already_sent'])
        self.assertEqual(result['summary']['messages_sent'], 2)
        self.assertEqual(result['summary']['students_without_phone'], 1)
        self.assertEqual(result['summary']['full_day_absent'], 1)
        bodies = dict(sender.calls)
        self.assertIn('WHOLE DAY on 14/07/2026', bodies['9876500003'])
        self.assertIn('1. PHYSICS', bodies['9876500002'])
        self.assertIn('Test College', bodies['9876500002'])

        log = self.db.query(NotificationLog).one()
        self.assertEqual(log.date, '2026-07-14')
        self.assertEqual(log.stream, 'BCA')
        self.assertEqual(log.messages_sent, 2)
        self.assertEqual(log.sent_by, 'manual')
        self.assertEqual(sorted(log.subjects_included), ['KANNADA', 'MATHEMATICS', 'PHYSICS'])

    def test_second_dispatch_is_idempotent(self):
        self._mark_day()
        sender = FakeSender()
        dispatcher = self._dispatcher(sender)
        dispatcher.dispatch(self.db, 'BCA', 1, DAY)
        calls_after_first = len(sender.calls)

        second = dispatcher.dispatch(self.db, 'bca', 1, '2026-07-14')
        self.assertTrue(second['already_sent'])
        self.assertEqual(second['previous_send']['messages_sent'], 2)
        self.assertEqual(len(sender.calls), calls_after_first)

    def test_force_resend_sends_again(self):
        self._mark_day()
        sender = FakeSender()
        dispatcher = self._dispatcher(sender)
        dispatcher.dispatch(self.db, 'BCA', 1, DAY)
        result = dispatcher.dispatch(self.db, 'BCA', 1, DAY, force_resend=True)
        self.assertFalse(result['already_sent'])
        self.assertEqual(len(sender.calls), 4)
        log = self.db.query(NotificationLog).one()
        self.assertEqual(log.sent_by, 'manual-force')

    def test_failures_are_recorded_without_aborting(self):
        self._mark_day()
        sender = FakeSender(failing_phones={'9876500002'}, raising_phones={'9876500003'})
        result = self._dispatcher(sender).dispatch(self.db, 'BCA', 1, DAY)
        self.assertEqual(result['summary']['messages_sent'], 0)
        self.assertEqual(result['summary']['messages_failed'], 2)
        errors = {item['student_id']: item['error'] for item in result['results']}
        self.assertEqual(errors['S2'], 'provider_rejected')
        self.assertEqual(errors['S3'], 'provider exploded')

        log = self.db.query(NotificationLog).one()
        self.assertEqual(log.messages_sent, 0)
        self.assertEqual(log.messages_failed, 2)

        # Nothing was delivered, so a retry is not blocked.
        retry = self._dispatcher(FakeSender()).dispatch(self.db, 'BCA', 1, DAY)
        self.assertFalse(retry['already_sent'])
        self.assertEqual(retry['summary']['messages_sent'], 2)

    def test_sends_are_batched_with_delay(self):
        for index in range(5, 10):
            student_service.create_student(self.store, 'BCA', 1, {
                'student_id': f'S{index}',
                'name': f'Student {index}',
                'parent_phone': f'987650000{index}',
            })
        self._mark_day()
        sender = FakeSender()
        result = self._dispatcher(sender, batch_size=3).dispatch(self.db, 'BCA', 1, DAY)
        self.assertEqual(result['summary']['messages_sent'], 7)
        self.assertEqual(self.sleeps, [1.5, 1.5])

    def test_dispatch_without_attendance_is_not_found(self):
        sender = FakeSender()
        with self.assertRaises(NoAttendanceData):
            self._dispatcher(sender).dispatch(self.db, 'BCA', 1, DAY)
        self.assertEqual(sender.calls, [])
        self.assertEqual(self.db.query(NotificationLog).count(), 0)

    def test_all_present_still_writes_log(self):
        attendance_service.mark_attendance(self.store, 'BCA', 1, 'Mathematics', DAY, ['S1', 'S2', 'S3', 'S4'])
        sender = FakeSender()
        result = self._dispatcher(sender).dispatch(self.db, 'BCA', 1, DAY)
        self.assertEqual(result['summary']['students_to_notify'], 0)
        self.assertEqual(sender.calls, [])
        log = self.db.query(NotificationLog).one()
        self.assertEqual(log.messages_sent, 0)
        self.assertEqual(log.subjects_included, ['MATHEMATICS'])

    def test_report_and_history(self):
        self._mark_day()
        before = daily_absence_report(self.db, self.store, 'BCA', 1, DAY)
        self.assertFalse(before['message_status']['already_sent'])
        self.assertEqual(before['summary']['students_to_notify'], 3)
        self.assertEqual(before['summary']['messages_to_send'], 2)

        self._dispatcher(FakeSender()).dispatch(self.db, 'BCA', 1, DAY)
        after = daily_absence_report(self.db, self.store, 'BCA', 1, DAY)
        self.assertTrue(after['message_status']['already_sent'])

        history = message_history(self.db, self.store, 'BCA', 1)
        self.assertEqual(history['pagination']['total'], 1)
        self.assertEqual(history['history'][0]['date'], '2026-07-14')


if __name__ == '__main__':
    unittest.main()
