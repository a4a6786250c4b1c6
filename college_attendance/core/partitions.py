from __future__ import annotations

import hashlib
import re

from college_attendance.core.streams import EntityKind, StreamRegistry, stream_registry
from college_attendance.errors import ValidationFailed


# Leaves room for the `uq_`/`ix_` constraint prefixes and suffixes within 63 chars.
MAX_PARTITION_ID_LENGTH = 50
_ATTENDANCE_SUFFIX = '_attendance'


def subject_slug(subject: str) -> str:
    """Injective slug of a subject name, case and whitespace insensitive.

    Names made only of letters, digits and single spaces map to
    `words_joined_by_underscores`. Any other name loses characters on the
    way, so it gets `__` plus a hash of the full name; plain slugs never
    contain `__`, which keeps the two families apart.
    """
    name = re.sub(r'\s+', ' ', str(subject or '').strip().lower())
    slug = re.sub(r'[^a-z0-9_]', '', name.replace(' ', '_'))
    if not slug.strip('_'):
        raise ValidationFailed(f'Subject name {subject!r} cannot be used as a partition key', field='subject')
    if re.fullmatch(r'[a-z0-9 ]+', name):
        return slug
    digest = hashlib.sha1(name.encode('utf-8')).hexdigest()[:8]
    return f'{slug}__{digest}'


def _fit_slug(slug: str, budget: int) -> str:
    if len(slug) <= budget:
        return slug
    digest = hashlib.sha1(slug.encode('utf-8')).hexdigest()[:8]
    return f'{slug[:max(1, budget - 9)]}_{digest}'


def resolve_partition(
    stream_name: str,
    semester: int,
    kind: EntityKind | str,
    subject: str | None = None,
    *,
    registry: StreamRegistry = stream_registry,
) -> str:
    """Map (stream, semester, kind[, subject]) to its partition table name.

    Student and subject partitions are `{prefix}_sem{n}_{kind}`; attendance is
    partitioned one level further by subject, `{prefix}_sem{n}_{slug}_attendance`.
    Long subject slugs are shortened with a hash suffix so the name stays a
    valid table identifier. Raises UnknownStream / SemesterOutOfRange for
    anything outside the registry.
    """
    kind = EntityKind(kind)
    descriptor = registry.validate(stream_name, semester)
    base = f'{descriptor.partition_prefix}_sem{int(semester)}'
    if kind is EntityKind.ATTENDANCE:
        if subject is None:
            raise ValidationFailed('Attendance partitions require a subject', field='subject')
        budget = MAX_PARTITION_ID_LENGTH - len(base) - len(_ATTENDANCE_SUFFIX) - 1
        return f'{base}_{_fit_slug(subject_slug(subject), budget)}{_ATTENDANCE_SUFFIX}'
    return f'{base}_{kind.value}'


def partition_names_for_stream(stream_name: str, *, registry: StreamRegistry = stream_registry) -> dict[int, dict[str, str]]:
    descriptor = registry.get(stream_name)
    return {
        sem: {
            EntityKind.STUDENTS.value: resolve_partition(descriptor.display_name, sem, EntityKind.STUDENTS, registry=registry),
            EntityKind.SUBJECTS.value: resolve_partition(descriptor.display_name, sem, EntityKind.SUBJECTS, registry=registry),
        }
        for sem in descriptor.allowed_semesters
    }
