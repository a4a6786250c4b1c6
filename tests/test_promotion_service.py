import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from freezegun import freeze_time
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError

from college_attendance.core.streams import stream_registry
from college_attendance.errors import UnknownStream
from college_attendance.services import promotion_service, student_service
from college_attendance.storage.partition_store import PartitionStore
from college_attendance.storage.schemas import row_to_dict


class PromotionServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_promotion_service.db'
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        self.store = PartitionStore(self.engine)

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _add(self, stream, semester, student_id, **extra):
        student_service.create_student(self.store, stream, semester, {
            'student_id': student_id,
            'name': f'Student {student_id}',
            **extra,
        })

    def _ids(self, stream, semester):
        table = self.store.students(stream, semester)
        with self.engine.connect() as conn:
            return sorted(row.student_id for row in conn.execute(select(table.c.student_id)).all())

    def _row(self, stream, semester, student_id):
        table = self.store.students(stream, semester)
        with self.engine.connect() as conn:
            return row_to_dict(conn.execute(select(table).where(table.c.student_id == student_id)).first())

    def test_promotion_pairs_follow_allowed_semesters(self):
        self.assertEqual(
            promotion_service.promotion_pairs(stream_registry.get('BCA')),
            [(5, 6), (4, 5), (3, 4), (2, 3), (1, 2)],
        )
        self.assertEqual(promotion_service.promotion_pairs(stream_registry.get('BCom Section B')), [(5, 6)])

    @freeze_time('2026-06-01 10:00:00')
    def test_full_stream_promotion(self):
        self._add('BCA', 1, 'A1')
        self._add('BCA', 1, 'A2', is_active=False)
        self._add('BCA', 2, 'B1')
        self._add('BCA', 5, 'E1')
        self._add('BCA', 6, 'F1')
        self._add('BCA', 6, 'F2')

        result = promotion_service.promote_stream(self.store, 'bca')

        expected_stamp = int(datetime(2026, 6, 1, 10, tzinfo=timezone.utc).timestamp() * 1000)
        self.assertEqual(result['promotion_batch'], f'simple_promotion_BCA_{expected_stamp}')
        self.assertEqual(result['total_graduated'], 2)
        self.assertEqual(result['total_promoted'], 3)
        self.assertEqual(result['inactive_discarded'], 1)

        self.assertEqual(self._ids('BCA', 1), [])
        self.assertEqual(self._ids('BCA', 2), ['A1'])
        self.assertEqual(self._ids('BCA', 3), ['B1'])
        self.assertEqual(self._ids('BCA', 5), [])
        self.assertEqual(self._ids('BCA', 6), ['E1'])

        moved = self._row('BCA', 2, 'A1')
        self.assertEqual(moved['semester'], 2)
        self.assertEqual(moved['original_semester'], 1)
        self.assertEqual(moved['migration_generation'], 1)
        self.assertEqual(moved['migration_batch'], result['promotion_batch'])
        self.assertEqual(len(moved['migration_history']), 1)
        entry = moved['migration_history'][0]
        self.assertEqual((entry['from_semester'], entry['to_semester'], entry['generation']), (1, 2, 1))
        self.assertEqual(entry['batch_id'], result['promotion_batch'])

    def test_second_promotion_extends_history(self):
        self._add('BCA', 1, 'A1')
        promotion_service.promote_stream(self.store, 'BCA')
        promotion_service.promote_stream(self.store, 'BCA')
        row = self._row('BCA', 3, 'A1')
        self.assertEqual(row['migration_generation'], 2)
        self.assertEqual([h['to_semester'] for h in row['migration_history']], [2, 3])

    def test_restricted_stream_only_runs_its_pairs(self):
        self._add('BCom Section B', 5, 'SB5')
        self._add('BCom Section B', 6, 'SB6')
        self._add('BCom', 5, 'BC5')

        result = promotion_service.promote_stream(self.store, 'BCom Section B')
        self.assertEqual(result['total_graduated'], 1)
        self.assertEqual(result['total_promoted'], 1)
        self.assertEqual(self._ids('BCom Section B', 6), ['SB5'])
        self.assertEqual(self._ids('BCom Section B', 5), [])
        self.assertEqual(self._ids('BCom', 5), ['BC5'])
        self.assertNotIn('bcomsectionb_sem4_students', self.store.cached_partitions())

    def test_failure_rolls_back_every_partition(self):
        self._add('BCA', 4, 'D1')
        self._add('BCA', 5, 'E1')
        self._add('BCA', 6, 'F1')

        real_insert = promotion_service.insert
        calls = {'count': 0}

        def flaky_insert(table):
            calls['count'] += 1
            if calls['count'] == 2:
                raise OperationalError('INSERT', {}, Exception('disk I/O error'))
            return real_insert(table)

        with mock.patch.object(promotion_service, 'insert', side_effect=flaky_insert):
            with self.assertRaises(OperationalError):
                promotion_service.promote_stream(self.store, 'BCA')

        self.assertEqual(self._ids('BCA', 4), ['D1'])
        self.assertEqual(self._ids('BCA', 5), ['E1'])
        self.assertEqual(self._ids('BCA', 6), ['F1'])
        self.assertEqual(self._row('BCA', 5, 'E1')['migration_generation'], 0)

    def test_preview_and_stream_info(self):
        self._add('BBA', 1, 'P1')
        self._add('BBA', 1, 'P2')
        self._add('BBA', 6, 'P6')
        preview = promotion_service.promotion_preview(self.store, 'BBA')
        self.assertEqual(preview['will_graduate'], 1)
        self.assertEqual(preview['will_promote'], 2)
        first = preview['semesters'][0]
        self.assertEqual((first['semester'], first['current_students'], first['action']), (1, 2, 'promote to semester 2'))
        self.assertEqual(preview['semesters'][-1]['action'], 'graduate')

        info = promotion_service.stream_info(self.store, 'BBA')
        self.assertEqual(info['available_semesters'], [1, 2, 3, 4, 5, 6])
        self.assertEqual(info['student_counts']['semester1'], 2)
        self.assertEqual(info['total_students'], 3)
        self.assertEqual(info['partitions'][1]['students'], 'bba_sem1_students')

        options = promotion_service.promotion_options(self.store)
        self.assertIn('BCom Section B', options['special_streams'])
        self.assertEqual(options['max_semesters'], 6)

        with self.assertRaises(UnknownStream):
            promotion_service.promotion_preview(self.store, 'MBA')


if __name__ == '__main__':
    unittest.main()
