from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select

from college_attendance.core.time_provider import parse_day
from college_attendance.errors import NoAttendanceData
from college_attendance.services.attendance_service import eligible_students
from college_attendance.services.student_service import active_students
from college_attendance.services.subject_service import active_subjects
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


FULL_DAY = 'full_day'
PARTIAL_DAY = 'partial_day'
PRESENT = 'present'


@dataclass
class StudentAbsence:
    student_id: str
    name: str
    parent_phone: str | None
    absent_subjects: list[str] = field(default_factory=list)
    applicable_subjects: int = 0

    @property
    def is_full_day_absent(self) -> bool:
        return self.applicable_subjects > 0 and len(self.absent_subjects) == self.applicable_subjects

    @property
    def message_type(self) -> str:
        if self.is_full_day_absent:
            return FULL_DAY
        return PARTIAL_DAY if self.absent_subjects else PRESENT

    @property
    def will_receive_message(self) -> bool:
        return bool(self.absent_subjects) and bool(self.parent_phone)

    def as_dict(self) -> dict:
        return {
            'student_id': self.student_id,
            'student_name': self.name,
            'has_phone': bool(self.parent_phone),
            'absent_subjects': list(self.absent_subjects),
            'absent_subject_count': len(self.absent_subjects),
            'applicable_subject_count': self.applicable_subjects,
            'is_full_day_absent': self.is_full_day_absent,
            'message_type': self.message_type,
            'will_receive_message': self.will_receive_message,
        }


@dataclass
class DailyAbsence:
    stream: str
    semester: int
    day: date
    subjects: list[str]
    subjects_with_attendance: list[str]
    students: list[StudentAbsence]

    @property
    def absentees(self) -> list[StudentAbsence]:
        return [student for student in self.students if student.absent_subjects]

    def counts(self) -> dict:
        absentees = self.absentees
        full_day = [student for student in absentees if student.is_full_day_absent]
        return {
            'total_students': len(self.students),
            'total_subjects': len(self.subjects),
            'subjects_with_attendance': len(self.subjects_with_attendance),
            'students_to_notify': len(absentees),
            'full_day_absent': len(full_day),
            'partial_day_absent': len(absentees) - len(full_day),
            'students_present': len(self.students) - len(absentees),
            'messages_to_send': sum(1 for student in absentees if student.parent_phone),
        }


def summarize(store: PartitionStore, stream: str, semester: int, day: date | str) -> DailyAbsence:
    """Work out which subjects each active student missed on `day`.

    Only subjects with at least one session recorded on the day count, and a
    student is only judged on subjects they are eligible for. With several
    sessions of one subject, missing any of them marks the subject absent.
    """
    descriptor = store.registry.validate(stream, semester)
    day = parse_day(day)
    students_table = store.students(descriptor.display_name, semester)
    subjects_table = store.subjects(descriptor.display_name, semester)
    with store.engine.connect() as conn:
        students = active_students(conn, students_table)
        subjects = active_subjects(conn, subjects_table)
    if not students or not subjects:
        raise NoAttendanceData(
            'No students or subjects found for this stream and semester',
            stream=descriptor.display_name,
            semester=int(semester),
        )

    # subject name -> (eligible ids, ids present in every session that day)
    recorded: dict[str, tuple[set[str], set[str]]] = {}
    for subject in subjects:
        table = store.attendance(descriptor.display_name, semester, subject['subject_name'], create=False)
        if table is None:
            continue
        with store.engine.connect() as conn:
            sessions = [
                row_to_dict(row)
                for row in conn.execute(
                    select(table).where(table.c.date == day, table.c.subject == subject['subject_name'])
                ).all()
            ]
        if not sessions:
            continue
        present_everywhere = set(sessions[0]['students_present'] or [])
        for session in sessions[1:]:
            present_everywhere &= set(session['students_present'] or [])
        eligible = {row['student_id'] for row in eligible_students(students, subject)}
        recorded[subject['subject_name']] = (eligible, present_everywhere)

    results = []
    for student in students:
        entry = StudentAbsence(student['student_id'], student['name'], student.get('parent_phone'))
        for subject_name, (eligible, present) in recorded.items():
            if student['student_id'] not in eligible:
                continue
            entry.applicable_subjects += 1
            if student['student_id'] not in present:
                entry.absent_subjects.append(subject_name)
        results.append(entry)

    return DailyAbsence(
        stream=descriptor.display_name,
        semester=int(semester),
        day=day,
        subjects=[subject['subject_name'] for subject in subjects],
        subjects_with_attendance=list(recorded),
        students=results,
    )
