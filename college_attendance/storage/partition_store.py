from __future__ import annotations

import logging
import re
import threading

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from college_attendance.core.partitions import MAX_PARTITION_ID_LENGTH, resolve_partition
from college_attendance.core.streams import EntityKind, StreamRegistry, stream_registry
from college_attendance.errors import PartitionBindingError
from college_attendance.storage.schemas import SCHEMA_BUILDERS


logger = logging.getLogger(__name__)

_PARTITION_ID_RE = re.compile(r'^[a-z0-9][a-z0-9_\-]*$')


class PartitionStore:
    """Owns the runtime-declared partition tables for one engine.

    Created once per process and handed to request handlers. Entries are only
    ever added; concurrent first access to the same partition id yields one
    Table because the check-and-insert runs under a single lock. A failed
    binding leaves nothing behind in the cache or the MetaData.
    """

    def __init__(self, engine: Engine, registry: StreamRegistry = stream_registry) -> None:
        self.engine = engine
        self.registry = registry
        self.metadata = MetaData()
        self._lock = threading.Lock()
        self._tables: dict[str, tuple[EntityKind, Table]] = {}

    def get_accessor(self, partition_id: str, kind: EntityKind | str, *, create: bool = True) -> Table | None:
        kind = EntityKind(kind)
        cached = self._tables.get(partition_id)
        if cached is not None:
            return self._checked(partition_id, kind, cached)
        with self._lock:
            cached = self._tables.get(partition_id)
            if cached is not None:
                return self._checked(partition_id, kind, cached)
            if not create and not self._exists_in_database(partition_id):
                return None
            table = self._bind(partition_id, kind)
            self._tables[partition_id] = (kind, table)
            logger.info('partition_bound partition=%s kind=%s', partition_id, kind.value)
            return table

    def students(self, stream: str, semester: int, *, create: bool = True) -> Table | None:
        return self.get_accessor(
            resolve_partition(stream, semester, EntityKind.STUDENTS, registry=self.registry),
            EntityKind.STUDENTS,
            create=create,
        )

    def subjects(self, stream: str, semester: int, *, create: bool = True) -> Table | None:
        return self.get_accessor(
            resolve_partition(stream, semester, EntityKind.SUBJECTS, registry=self.registry),
            EntityKind.SUBJECTS,
            create=create,
        )

    def attendance(self, stream: str, semester: int, subject: str, *, create: bool = True) -> Table | None:
        return self.get_accessor(
            resolve_partition(stream, semester, EntityKind.ATTENDANCE, subject, registry=self.registry),
            EntityKind.ATTENDANCE,
            create=create,
        )

    def _checked(self, partition_id: str, kind: EntityKind, cached: tuple[EntityKind, Table]) -> Table:
        bound_kind, table = cached
        if bound_kind is not kind:
            raise PartitionBindingError(
                f'Partition {partition_id} is bound as {bound_kind.value}, not {kind.value}',
                partition=partition_id,
            )
        return table

    def _bind(self, partition_id: str, kind: EntityKind) -> Table:
        if not _PARTITION_ID_RE.match(partition_id or '') or len(partition_id) > MAX_PARTITION_ID_LENGTH:
            raise PartitionBindingError(f'Malformed partition identifier: {partition_id!r}', partition=partition_id)
        table = None
        try:
            table = SCHEMA_BUILDERS[kind](partition_id, self.metadata)
            table.create(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            if table is not None:
                self.metadata.remove(table)
            logger.exception('partition_bind_failed partition=%s kind=%s', partition_id, kind.value)
            raise PartitionBindingError(f'Could not bind partition {partition_id}', partition=partition_id) from exc
        return table

    def _exists_in_database(self, partition_id: str) -> bool:
        return inspect(self.engine).has_table(partition_id)

    def partition_exists(self, partition_id: str) -> bool:
        return partition_id in self._tables or self._exists_in_database(partition_id)

    def cached_partitions(self) -> list[str]:
        return sorted(self._tables)

    def __len__(self) -> int:
        return len(self._tables)
