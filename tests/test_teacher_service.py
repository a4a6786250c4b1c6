import tempfile
import unittest
from datetime import date
from pathlib import Path

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from college_attendance.db import Base
from college_attendance.errors import (
    DuplicateSubject,
    DuplicateTeacher,
    SemesterOutOfRange,
    SubjectNotFound,
    TeacherNotFound,
)
from college_attendance.models import TeacherProfile, TeacherSubjectStatus
from college_attendance.services import teacher_service


class TeacherServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_teacher_service.db'
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)()
        teacher_service.sync_teacher(self.db, 'uid-1', 'Meera@College.edu ', 'Meera Rao')

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _subject(self, **overrides):
        payload = {
            'subject_name': 'data structures',
            'subject_code': 'bca301',
            'stream': 'bca',
            'semester': 3,
            'students': [{'student_id': 'u18er23c0001', 'name': 'Anil', 'phone': '9876500001'}],
        }
        payload.update(overrides)
        return teacher_service.add_subject(self.db, 'uid-1', payload)

    def test_sync_creates_then_updates_by_email(self):
        profile = teacher_service.get_teacher(self.db, 'uid-1')
        self.assertEqual(profile.email, 'meera@college.edu')

        profile, created = teacher_service.sync_teacher(self.db, 'uid-2', 'meera@college.edu', 'Meera R.')
        self.assertFalse(created)
        self.assertEqual(profile.external_uid, 'uid-2')
        self.assertEqual(profile.name, 'Meera R.')
        self.assertEqual(self.db.query(TeacherProfile).count(), 1)

        with self.assertRaises(TeacherNotFound):
            teacher_service.get_teacher(self.db, 'uid-1')

    def test_sync_to_an_email_owned_by_another_profile_conflicts(self):
        teacher_service.sync_teacher(self.db, 'uid-2', 'suresh@college.edu', 'Suresh')

        with self.assertRaises(DuplicateTeacher) as ctx:
            teacher_service.sync_teacher(self.db, 'uid-1', 'Suresh@College.edu', 'Meera Rao')
        self.assertEqual(ctx.exception.status_code, 409)

        profile = teacher_service.get_teacher(self.db, 'uid-1')
        self.assertEqual(profile.email, 'meera@college.edu')
        self.assertEqual(teacher_service.get_teacher(self.db, 'uid-2').email, 'suresh@college.edu')

    def test_subject_library_lifecycle(self):
        row = self._subject()
        self.assertEqual(row.subject_name, 'DATA STRUCTURES')
        self.assertEqual(row.subject_code, 'BCA301')
        self.assertEqual(row.stream, 'BCA')
        self.assertEqual(row.students[0]['student_id'], 'U18ER23C0001')

        with self.assertRaises(DuplicateSubject):
            self._subject()
        with self.assertRaises(SemesterOutOfRange):
            self._subject(stream='BCom Section B', semester=2, subject_code='X1')

        other = self._subject(subject_code='BCA302', subject_name='networks', students=[])
        teacher_service.set_subject_status(self.db, 'uid-1', other.id, TeacherSubjectStatus.COMPLETED)

        active = teacher_service.list_subjects(self.db, 'uid-1', TeacherSubjectStatus.ACTIVE)
        self.assertEqual([item.subject_code for item in active], ['BCA301'])
        self.assertEqual(len(teacher_service.list_subjects(self.db, 'uid-1')), 2)

        teacher_service.delete_subject(self.db, 'uid-1', row.id)
        with self.assertRaises(SubjectNotFound):
            teacher_service.delete_subject(self.db, 'uid-1', row.id)

        payload = teacher_service.profile_to_dict(teacher_service.get_teacher(self.db, 'uid-1'))
        self.assertEqual([item['subject_code'] for item in payload['subjects']], ['BCA302'])
        self.assertEqual(payload['subjects'][0]['student_count'], 0)

    @freeze_time('2026-07-14 04:30:00')
    def test_queue_and_completed_sessions(self):
        profile = teacher_service.save_attendance_queue(self.db, 'uid-1', [{'subject': 'DATA STRUCTURES', 'slot': 1}])
        self.assertEqual(profile.attendance_queue, [{'subject': 'DATA STRUCTURES', 'slot': 1}])
        self.assertEqual(profile.last_queue_update.isoformat(), '2026-07-14T10:00:00')

        for day, slot in ((date(2026, 7, 14), 1), (date(2026, 7, 14), 2), (date(2026, 7, 13), 1)):
            teacher_service.record_completed_session(self.db, 'uid-1', {
                'subject': 'data structures',
                'stream': 'BCA',
                'semester': 3,
                'date': day,
                'session_slot': slot,
                'present_count': 40,
                'total_students': 45,
            })

        self.assertEqual(len(teacher_service.completed_sessions(self.db, 'uid-1')), 3)
        today = teacher_service.completed_sessions(self.db, 'uid-1', date(2026, 7, 14))
        self.assertEqual([item['session_slot'] for item in today], [1, 2])
        self.assertEqual(today[0]['subject'], 'DATA STRUCTURES')


if __name__ == '__main__':
    unittest.main()
