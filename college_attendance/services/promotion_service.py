from __future__ import annotations

import logging
import re

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from college_attendance.core.partitions import partition_names_for_stream
from college_attendance.core.streams import StreamDescriptor
from college_attendance.core.time_provider import TimeProvider, default_time_provider
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


logger = logging.getLogger(__name__)


def promotion_pairs(descriptor: StreamDescriptor) -> list[tuple[int, int]]:
    """(from, to) semester pairs, highest source first."""
    allowed = set(descriptor.allowed_semesters)
    return [
        (sem, sem + 1)
        for sem in sorted(allowed, reverse=True)
        if sem + 1 in allowed
    ]


def promotion_batch_id(descriptor: StreamDescriptor, time_provider: TimeProvider) -> str:
    stamp = int(time_provider.now().timestamp() * 1000)
    name = re.sub(r'\s+', '_', descriptor.display_name)
    return f'simple_promotion_{name}_{stamp}'


def _stream_type(descriptor: StreamDescriptor) -> str:
    if descriptor.is_restricted:
        sems = descriptor.allowed_semesters
        return f'Limited Stream ({sems[0]}-{sems[-1]})'
    return 'Full Stream'


def promotion_options(store: PartitionStore) -> dict:
    return {
        'available_streams': [
            {
                'code': descriptor.display_name,
                'semesters': list(descriptor.allowed_semesters),
                'stream_type': _stream_type(descriptor),
                'terminal_semester': descriptor.terminal_semester,
            }
            for descriptor in store.registry
        ],
        'max_semesters': max(descriptor.terminal_semester for descriptor in store.registry),
        'special_streams': {
            descriptor.display_name: {
                'note': f'Limited to semesters {", ".join(str(s) for s in descriptor.allowed_semesters)} only',
                'available_semesters': list(descriptor.allowed_semesters),
            }
            for descriptor in store.registry
            if descriptor.is_restricted
        },
    }


def _active_counts(store: PartitionStore, descriptor: StreamDescriptor) -> dict[int, int]:
    counts: dict[int, int] = {}
    with store.engine.connect() as conn:
        for sem in descriptor.allowed_semesters:
            table = store.students(descriptor.display_name, sem, create=False)
            if table is None:
                counts[sem] = 0
                continue
            counts[sem] = conn.execute(
                select(func.count()).select_from(table).where(table.c.is_active.is_(True))
            ).scalar_one()
    return counts


def promotion_preview(store: PartitionStore, stream: str) -> dict:
    descriptor = store.registry.get(stream)
    counts = _active_counts(store, descriptor)
    terminal = descriptor.terminal_semester
    targets = dict(promotion_pairs(descriptor))
    semesters = []
    for sem in descriptor.allowed_semesters:
        if sem == terminal:
            action = 'graduate'
        elif sem in targets:
            action = f'promote to semester {targets[sem]}'
        else:
            action = 'no change'
        semesters.append({'semester': sem, 'current_students': counts[sem], 'action': action})
    return {
        'stream': descriptor.display_name,
        'stream_type': _stream_type(descriptor),
        'semesters': semesters,
        'will_graduate': counts[terminal],
        'will_promote': sum(counts[sem] for sem in targets),
        'total_students': sum(counts.values()),
    }


def promote_stream(
    store: PartitionStore,
    stream: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Advance every active student of `stream` by one semester.

    The terminal semester is cleared first (graduation), then each pair runs
    from the highest source down so no partition is read after it was
    written. Everything happens in one transaction; any failure rolls back
    all partitions.
    """
    descriptor = store.registry.get(stream)
    pairs = promotion_pairs(descriptor)
    terminal = descriptor.terminal_semester
    # Bind every partition before the transaction starts; DDL inside it would
    # contend with the open write on SQLite.
    tables = {sem: store.students(descriptor.display_name, sem) for sem in descriptor.allowed_semesters}

    now = time_provider.naive_now()
    batch_id = promotion_batch_id(descriptor, time_provider)
    details = []
    graduated = 0
    promoted = 0
    discarded_inactive = 0
    logger.info('promotion_started stream=%s batch=%s pairs=%s', descriptor.display_name, batch_id, len(pairs))

    try:
        with store.engine.begin() as conn:
            graduating_table = tables[terminal]
            graduating = [
                row_to_dict(row)
                for row in conn.execute(select(graduating_table).order_by(graduating_table.c.student_id.asc())).all()
            ]
            if graduating:
                conn.execute(delete(graduating_table))
                graduated = len(graduating)
                details.append({
                    'action': 'graduation',
                    'semester': terminal,
                    'count': graduated,
                    'students': [{'student_id': row['student_id'], 'name': row['name']} for row in graduating],
                })

            for from_sem, to_sem in pairs:
                source = tables[from_sem]
                target = tables[to_sem]
                rows = [row_to_dict(row) for row in conn.execute(select(source)).all()]
                movers = [row for row in rows if row['is_active']]
                inactive = len(rows) - len(movers)
                if movers:
                    new_rows = []
                    for row in movers:
                        generation = int(row.get('migration_generation') or 0) + 1
                        history = list(row.get('migration_history') or [])
                        history.append({
                            'from_semester': from_sem,
                            'to_semester': to_sem,
                            'date': now.isoformat(),
                            'batch_id': batch_id,
                            'generation': generation,
                        })
                        values = {key: value for key, value in row.items() if key != 'id'}
                        values.update({
                            'semester': to_sem,
                            'migration_generation': generation,
                            'migration_history': history,
                            'added_to_semester_at': now,
                            'last_migration_at': now,
                            'migration_batch': batch_id,
                            'updated_at': now,
                        })
                        new_rows.append(values)
                    conn.execute(insert(target), new_rows)
                if rows:
                    conn.execute(delete(source))
                promoted += len(movers)
                discarded_inactive += inactive
                details.append({
                    'action': 'promotion',
                    'from_semester': from_sem,
                    'to_semester': to_sem,
                    'count': len(movers),
                    'inactive_discarded': inactive,
                })
    except SQLAlchemyError:
        logger.exception('promotion_failed stream=%s batch=%s', descriptor.display_name, batch_id)
        raise

    logger.info(
        'promotion_finished stream=%s batch=%s promoted=%s graduated=%s inactive_discarded=%s',
        descriptor.display_name,
        batch_id,
        promoted,
        graduated,
        discarded_inactive,
    )
    return {
        'stream': descriptor.display_name,
        'stream_type': _stream_type(descriptor),
        'promotion_batch': batch_id,
        'promotion_date': now.isoformat(),
        'total_promoted': promoted,
        'total_graduated': graduated,
        'inactive_discarded': discarded_inactive,
        'details': details,
    }


def stream_info(store: PartitionStore, stream: str) -> dict:
    descriptor = store.registry.get(stream)
    counts = _active_counts(store, descriptor)
    names = partition_names_for_stream(descriptor.display_name, registry=store.registry)
    return {
        'stream': descriptor.display_name,
        'stream_type': _stream_type(descriptor),
        'available_semesters': list(descriptor.allowed_semesters),
        'partitions': names,
        'student_counts': {f'semester{sem}': count for sem, count in counts.items()},
        'total_students': sum(counts.values()),
    }
