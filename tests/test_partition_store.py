import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

from sqlalchemy import Table, create_engine, inspect
from sqlalchemy.exc import OperationalError

from college_attendance.core.streams import EntityKind
from college_attendance.errors import PartitionBindingError
from college_attendance.storage.partition_store import PartitionStore


class PartitionStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_partition_store.db'
        self.engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        self.store = PartitionStore(self.engine)

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()

    def test_repeat_access_returns_cached_table(self):
        first = self.store.students('BCA', 1)
        second = self.store.get_accessor('bca_sem1_students', EntityKind.STUDENTS)
        self.assertIs(first, second)
        self.assertTrue(inspect(self.engine).has_table('bca_sem1_students'))
        self.assertEqual(self.store.cached_partitions(), ['bca_sem1_students'])

    def test_concurrent_first_access_yields_one_table(self):
        barrier = threading.Barrier(8)
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            try:
                barrier.wait()
                table = self.store.subjects('BBA', 3)
                with lock:
                    results.append(table)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 8)
        self.assertEqual(len({id(table) for table in results}), 1)
        self.assertEqual(len(self.store), 1)

    def test_malformed_identifier_is_rejected_and_not_cached(self):
        with self.assertRaises(PartitionBindingError):
            self.store.get_accessor('Bad Name!', EntityKind.STUDENTS)
        with self.assertRaises(PartitionBindingError):
            self.store.get_accessor('x' * 80, EntityKind.STUDENTS)
        self.assertEqual(len(self.store), 0)

    def test_failed_binding_leaves_no_poisoned_entry(self):
        failure = OperationalError('CREATE TABLE', {}, Exception('database is locked'))
        with mock.patch.object(Table, 'create', side_effect=failure):
            with self.assertRaises(PartitionBindingError):
                self.store.students('BCA', 2)
        self.assertEqual(len(self.store), 0)
        self.assertNotIn('bca_sem2_students', self.store.metadata.tables)

        table = self.store.students('BCA', 2)
        self.assertEqual(table.name, 'bca_sem2_students')
        self.assertTrue(inspect(self.engine).has_table('bca_sem2_students'))

    def test_kind_mismatch_is_a_binding_error(self):
        self.store.get_accessor('bca_sem1_students', EntityKind.STUDENTS)
        with self.assertRaises(PartitionBindingError):
            self.store.get_accessor('bca_sem1_students', EntityKind.SUBJECTS)

    def test_read_only_lookup_does_not_create_tables(self):
        self.assertIsNone(self.store.students('BCA', 4, create=False))
        self.assertFalse(inspect(self.engine).has_table('bca_sem4_students'))
        self.assertFalse(self.store.partition_exists('bca_sem4_students'))

        self.store.students('BCA', 4)
        fresh = PartitionStore(self.engine)
        self.assertIsNotNone(fresh.students('BCA', 4, create=False))

    def test_attendance_partitions_are_per_subject(self):
        maths = self.store.attendance('BCA', 1, 'Mathematics')
        kannada = self.store.attendance('BCA', 1, 'KANNADA')
        self.assertEqual(maths.name, 'bca_sem1_mathematics_attendance')
        self.assertEqual(kannada.name, 'bca_sem1_kannada_attendance')
        self.assertIsNot(maths, kannada)


if __name__ == '__main__':
    unittest.main()
