from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from college_attendance.communication.whatsapp import build_message_sender
from college_attendance.config import settings
from college_attendance.db import Base, engine
from college_attendance.errors import register_error_handlers
from college_attendance.request_context import EndpointNameRoute
from college_attendance.routers import attendance, notifications, promotion, students, subjects, system, teachers
from college_attendance.storage.partition_store import PartitionStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.partition_store = PartitionStore(engine)
    app.state.message_sender = build_message_sender(settings)
    logging.getLogger(__name__).info(
        'startup env=%s streams=%s messaging=%s',
        settings.app_env,
        len(app.state.partition_store.registry),
        app.state.message_sender.name,
    )
    yield


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
register_error_handlers(app)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('college_attendance.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response

app.include_router(system.router)
app.include_router(students.router)
app.include_router(subjects.router)
app.include_router(attendance.router)
app.include_router(notifications.router)
app.include_router(promotion.router)
app.include_router(teachers.router)
