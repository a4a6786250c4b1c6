from datetime import date as date_type
from typing import Any

from pydantic import BaseModel, Field

from college_attendance.core.streams import Language, SubjectType
from college_attendance.models import TeacherSubjectStatus


class StudentCreateRequest(BaseModel):
    student_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    parent_phone: str | None = None
    language_choice: Language | None = None
    academic_year: int | None = Field(default=None, ge=2000, le=2100)
    is_active: bool = True


class LegacyStudentCreateRequest(BaseModel):
    student_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    parent_phone: str = Field(min_length=1)
    language_choice: Language | None = None


class BulkStudentItem(BaseModel):
    student_id: str | None = None
    name: str | None = None
    parent_phone: str | None = None
    language_choice: Language | None = None


class BulkStudentUploadRequest(BaseModel):
    students: list[BulkStudentItem] = Field(min_length=1)


class StudentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    parent_phone: str | None = None
    language_choice: Language | None = None
    academic_year: int | None = Field(default=None, ge=2000, le=2100)
    is_active: bool | None = None


class SubjectCreateRequest(BaseModel):
    subject_name: str = Field(min_length=2, max_length=120)
    subject_code: str | None = Field(default=None, max_length=40)
    subject_type: SubjectType = SubjectType.CORE
    credits: int = Field(default=4, ge=1, le=6)
    is_language_subject: bool = False
    language_type: Language | None = None
    description: str = ''
    is_active: bool = True


class SubjectSetupRequest(BaseModel):
    subjects: list[str] = Field(min_length=1)


class AttendanceMarkRequest(BaseModel):
    date: date_type
    students_present: list[str]
    force_overwrite: bool = False
    session_slot: int = Field(default=1, ge=1, le=12)
    session_time: str | None = Field(default=None, pattern=r'^\d{2}:\d{2}$')
    marked_by: str | None = None


class AttendanceRegisterUpdateRequest(BaseModel):
    attendance_map: dict[str, list[str]]


class SendAbsenceMessagesRequest(BaseModel):
    force_resend: bool = False


class TeacherSyncRequest(BaseModel):
    external_uid: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255, pattern=r'^[^@\s]+@[^@\s]+$')
    name: str = Field(min_length=1, max_length=120)


class RosterStudent(BaseModel):
    student_id: str
    name: str
    phone: str = ''


class TeacherSubjectCreateRequest(BaseModel):
    subject_name: str = Field(min_length=1, max_length=120)
    subject_code: str = Field(min_length=1, max_length=40)
    stream: str
    semester: int = Field(ge=1, le=8)
    students: list[RosterStudent] = Field(default_factory=list)


class TeacherSubjectStatusRequest(BaseModel):
    status: TeacherSubjectStatus


class AttendanceQueueRequest(BaseModel):
    queue: list[dict[str, Any]]


class CompletedSessionRequest(BaseModel):
    subject: str
    stream: str
    semester: int = Field(ge=1, le=8)
    date: date_type
    session_slot: int = Field(default=1, ge=1)
    present_count: int = Field(default=0, ge=0)
    total_students: int = Field(default=0, ge=0)
