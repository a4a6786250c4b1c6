from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from college_attendance.db import Base


class SentBy(str, Enum):
    MANUAL = 'manual'
    MANUAL_FORCE = 'manual-force'


class TeacherSubjectStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    COMPLETED = 'completed'


class NotificationLog(Base):
    __tablename__ = 'notification_logs'
    __table_args__ = (
        UniqueConstraint('date', 'stream', 'semester', name='uq_notification_logs_date_stream_semester'),
        Index('ix_notification_logs_stream_semester', 'stream', 'semester'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    date: Mapped[str] = mapped_column(String(10), index=True)
    stream: Mapped[str] = mapped_column(String(60))
    semester: Mapped[int] = mapped_column(Integer)
    messages_sent: Mapped[int] = mapped_column(Integer, default=0)
    messages_failed: Mapped[int] = mapped_column(Integer, default=0)
    total_students_notified: Mapped[int] = mapped_column(Integer, default=0)
    full_day_absent_count: Mapped[int] = mapped_column(Integer, default=0)
    partial_day_absent_count: Mapped[int] = mapped_column(Integer, default=0)
    subjects_included: Mapped[list] = mapped_column(JSON, default=list)
    results: Mapped[list] = mapped_column(JSON, default=list)
    sent_by: Mapped[str] = mapped_column(String(20), default=SentBy.MANUAL.value)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class TeacherProfile(Base):
    __tablename__ = 'teacher_profiles'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    external_uid: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    attendance_queue: Mapped[list] = mapped_column(JSON, default=list)
    completed_today: Mapped[list] = mapped_column(JSON, default=list)
    last_queue_update: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subjects: Mapped[list['TeacherSubject']] = relationship(
        'TeacherSubject',
        back_populates='teacher',
        cascade='all, delete-orphan',
        order_by='TeacherSubject.id',
    )


class TeacherSubject(Base):
    __tablename__ = 'teacher_subjects'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'subject_code', 'stream', 'semester', name='uq_teacher_subjects_teacher_code'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teacher_profiles.id'), index=True)
    subject_name: Mapped[str] = mapped_column(String(120))
    subject_code: Mapped[str] = mapped_column(String(40))
    stream: Mapped[str] = mapped_column(String(60))
    semester: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=TeacherSubjectStatus.ACTIVE.value, index=True)
    students: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher: Mapped['TeacherProfile'] = relationship('TeacherProfile', back_populates='subjects')
