from college_attendance.routers import attendance, notifications, promotion, students, subjects, system, teachers

__all__ = [
    'attendance',
    'notifications',
    'promotion',
    'students',
    'subjects',
    'system',
    'teachers',
]
