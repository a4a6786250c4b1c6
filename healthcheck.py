import sys

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import func, insert, inspect, select

from college_attendance.communication.whatsapp import build_message_sender
from college_attendance.config import settings
from college_attendance.core.streams import stream_registry
from college_attendance.db import engine
from college_attendance.models import NotificationLog
from college_attendance.storage.partition_store import PartitionStore


GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_shared_tables_writable():
    """Write a throwaway notification log row and roll it back."""
    inspector = inspect(engine)
    missing = [
        name for name in ('notification_logs', 'teacher_profiles', 'teacher_subjects')
        if not inspector.has_table(name)
    ]
    if missing:
        raise RuntimeError(f"Missing shared tables: {', '.join(missing)}")
    table = NotificationLog.__table__
    with engine.connect() as conn:
        conn.execute(insert(table).values(date='1970-01-01', stream='__healthcheck__', semester=0))
        written = conn.execute(
            select(func.count()).select_from(table).where(table.c.stream == '__healthcheck__')
        ).scalar_one()
        conn.rollback()
    if written != 1:
        raise RuntimeError(f'Expected one healthcheck row, found {written}')
    return 'shared tables present, notification log writable'


def check_migrations_current():
    script = ScriptDirectory.from_config(Config('alembic.ini'))
    heads = set(script.get_heads())
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    if current is None:
        raise RuntimeError('Shared tables were never migrated (run alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'Migration {current} is behind head {sorted(heads)}')
    return f'revision={current}'


def check_stream_registry():
    if not len(stream_registry):
        raise RuntimeError('Stream registry is empty')
    return f'streams={len(stream_registry)}'


def check_partition_binding():
    store = PartitionStore(engine)
    descriptor = next(iter(stream_registry))
    semester = descriptor.allowed_semesters[0]
    table = store.students(descriptor.display_name, semester)
    with engine.connect() as conn:
        conn.execute(table.select().limit(1)).all()
    return f'partition={table.name}'


def check_whatsapp_config():
    sender = build_message_sender(settings)
    ok, detail = sender.health_check()
    if not ok:
        raise RuntimeError(detail)
    return detail


def main():
    checks = [
        ('shared tables writable', check_shared_tables_writable),
        ('migrations current', check_migrations_current),
        ('stream registry loaded', check_stream_registry),
        ('partition binding', check_partition_binding),
        ('whatsapp configuration', check_whatsapp_config),
    ]
    results = [run_check(name, fn) for name, fn in checks]
    passed = sum(1 for ok in results if ok)
    print(f'{passed}/{len(results)} checks passed')
    return 0 if all(results) else 1


if __name__ == '__main__':
    sys.exit(main())
