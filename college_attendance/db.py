import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from college_attendance.config import settings
from college_attendance.request_context import current_endpoint


Base = declarative_base()

_slow_logger = logging.getLogger('college_attendance.db.slow_query')


def engine_connect_args(database_url: str, query_timeout_ms: int) -> dict:
    # Statement timeouts are a driver concern; SQLite only knows a lock-wait timeout.
    backend = make_url(database_url).get_backend_name()
    if backend == 'sqlite':
        return {'check_same_thread': False, 'timeout': max(1.0, query_timeout_ms / 1000.0)}
    if backend == 'postgresql':
        return {'options': f'-c statement_timeout={int(query_timeout_ms)}'}
    if backend == 'mysql':
        return {'read_timeout': max(1, int(query_timeout_ms / 1000))}
    return {}


def install_slow_query_logging(target: Engine, threshold_ms: int) -> None:
    @event.listens_for(target, 'before_cursor_execute')
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.perf_counter()

    @event.listens_for(target, 'after_cursor_execute')
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = getattr(context, '_query_start_time', None)
        if start is None:
            return
        duration_ms = (time.perf_counter() - start) * 1000.0
        if duration_ms >= threshold_ms:
            sql_text = (statement or '').replace('\n', ' ').strip()
            _slow_logger.warning(
                'slow_query duration_ms=%.2f endpoint=%s sql=%s',
                duration_ms,
                current_endpoint.get(),
                sql_text,
            )


def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or settings.database_url
    created = create_engine(url, connect_args=engine_connect_args(url, settings.db_query_timeout_ms))
    install_slow_query_logging(created, settings.db_slow_query_ms)
    return created


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
