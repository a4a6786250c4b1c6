from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class AttendanceApiError(Exception):
    status_code = 500
    code = 'internal_error'

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload = {'success': False, 'error': self.code, 'message': self.message}
        payload.update(self.details)
        return payload


class ValidationFailed(AttendanceApiError, ValueError):
    status_code = 400
    code = 'validation_failed'


class SemesterOutOfRange(ValidationFailed):
    code = 'semester_out_of_range'


class IneligibleStudents(ValidationFailed):
    code = 'ineligible_students'


class NotFoundError(AttendanceApiError, LookupError):
    status_code = 404
    code = 'not_found'


class UnknownStream(NotFoundError):
    code = 'unknown_stream'


class SubjectNotFound(NotFoundError):
    code = 'subject_not_found'


class StudentNotFound(NotFoundError):
    code = 'student_not_found'


class TeacherNotFound(NotFoundError):
    code = 'teacher_not_found'


class NoAttendanceData(NotFoundError):
    code = 'no_data'


class ConflictError(AttendanceApiError, ValueError):
    status_code = 409
    code = 'conflict'


class DuplicateStudent(ConflictError):
    code = 'duplicate_student'


class DuplicateSubject(ConflictError):
    code = 'duplicate_subject'


class DuplicateTeacher(ConflictError):
    code = 'duplicate_teacher'


class DuplicateSession(ConflictError):
    code = 'duplicate_session'


class PartitionBindingError(AttendanceApiError, RuntimeError):
    status_code = 500
    code = 'partition_binding_failed'


async def _handle_api_error(request: Request, exc: AttendanceApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error('request_failed path=%s code=%s message=%s', request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            'field': '.'.join(str(part) for part in err.get('loc', ()) if part != 'body'),
            'message': err.get('msg', ''),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={'success': False, 'error': 'validation_failed', 'message': 'Validation error', 'errors': errors},
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('request_unhandled_error path=%s', request.url.path)
    return JSONResponse(
        status_code=500,
        content={'success': False, 'error': 'internal_error', 'message': 'Internal server error'},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AttendanceApiError, _handle_api_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
