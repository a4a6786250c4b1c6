from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from college_attendance.errors import SemesterOutOfRange, UnknownStream


class Language(str, Enum):
    KANNADA = 'KANNADA'
    HINDI = 'HINDI'
    SANSKRIT = 'SANSKRIT'
    TAMIL = 'TAMIL'


class SubjectType(str, Enum):
    CORE = 'CORE'
    ELECTIVE = 'ELECTIVE'
    LANGUAGE = 'LANGUAGE'
    PRACTICAL = 'PRACTICAL'
    PROJECT = 'PROJECT'


class EntityKind(str, Enum):
    STUDENTS = 'students'
    SUBJECTS = 'subjects'
    ATTENDANCE = 'attendance'


@dataclass(frozen=True)
class StreamDescriptor:
    display_name: str
    partition_prefix: str
    allowed_semesters: tuple[int, ...]
    aliases: tuple[str, ...] = field(default_factory=tuple)

    @property
    def terminal_semester(self) -> int:
        return max(self.allowed_semesters)

    @property
    def is_restricted(self) -> bool:
        return self.allowed_semesters != tuple(range(1, self.terminal_semester + 1))

    def as_dict(self) -> dict:
        return {
            'name': self.display_name,
            'partition_prefix': self.partition_prefix,
            'semesters': list(self.allowed_semesters),
        }


_PREFIX_RE = re.compile(r'^[a-z0-9][a-z0-9_\-]*$')
# A prefix containing `_sem<digit>` could make two partition names collide.
_SEMESTER_MARK_RE = re.compile(r'_sem\d')


def normalize_stream_key(value: str) -> str:
    return re.sub(r'\s+', ' ', str(value or '').strip()).upper()


class StreamRegistry:
    def __init__(self, descriptors: list[StreamDescriptor]) -> None:
        self._descriptors: tuple[StreamDescriptor, ...] = tuple(descriptors)
        self._by_key: dict[str, StreamDescriptor] = {}
        prefixes: set[str] = set()
        for descriptor in self._descriptors:
            if not descriptor.allowed_semesters:
                raise ValueError(f'Stream {descriptor.display_name} has no semesters')
            if not _PREFIX_RE.match(descriptor.partition_prefix) or _SEMESTER_MARK_RE.search(descriptor.partition_prefix):
                raise ValueError(f'Invalid partition prefix: {descriptor.partition_prefix!r}')
            if descriptor.partition_prefix in prefixes:
                raise ValueError(f'Duplicate partition prefix: {descriptor.partition_prefix}')
            prefixes.add(descriptor.partition_prefix)
            for key in (descriptor.display_name, *descriptor.aliases):
                normalized = normalize_stream_key(key)
                existing = self._by_key.get(normalized)
                if existing is not None and existing is not descriptor:
                    raise ValueError(f'Stream name {key!r} maps to more than one stream')
                self._by_key[normalized] = descriptor

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def names(self) -> list[str]:
        return [d.display_name for d in self._descriptors]

    def get(self, stream_name: str) -> StreamDescriptor:
        descriptor = self._by_key.get(normalize_stream_key(stream_name))
        if descriptor is None:
            raise UnknownStream(
                f'Unknown stream: {stream_name}',
                stream=stream_name,
                valid_streams=self.names(),
            )
        return descriptor

    def validate(self, stream_name: str, semester: int) -> StreamDescriptor:
        descriptor = self.get(stream_name)
        if int(semester) not in descriptor.allowed_semesters:
            raise SemesterOutOfRange(
                f'Stream {descriptor.display_name} does not support semester {semester}',
                stream=descriptor.display_name,
                semester=semester,
                allowed_semesters=list(descriptor.allowed_semesters),
            )
        return descriptor


_FULL_RANGE = (1, 2, 3, 4, 5, 6)

DEFAULT_STREAMS = [
    StreamDescriptor('BCA', 'bca', _FULL_RANGE),
    StreamDescriptor('BCA AI & ML', 'bcaaiandml', _FULL_RANGE, aliases=('BCA AI AND ML', 'BCA AIML')),
    StreamDescriptor('BBA', 'bba', _FULL_RANGE),
    StreamDescriptor('BCom', 'bcom', _FULL_RANGE, aliases=('BCOM SECTION A',)),
    StreamDescriptor('BCom Section B', 'bcomsectionb', (5, 6), aliases=('BCOMSECTIONB',)),
    StreamDescriptor('BCom Section C', 'bcomsectionc', _FULL_RANGE, aliases=('BCOMSECTIONC',)),
    StreamDescriptor('BCom-BDA', 'bcom-bda', _FULL_RANGE, aliases=('BCOM BDA', 'BCOM_BDA')),
    StreamDescriptor('BCom A and F', 'bcom_a_and_f', _FULL_RANGE, aliases=('BCOM A&F', 'BCOM_A_AND_F')),
]

stream_registry = StreamRegistry(DEFAULT_STREAMS)
