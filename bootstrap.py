import argparse
import logging

from college_attendance.db import Base, engine
from college_attendance import models  # noqa: F401
from college_attendance.core.streams import stream_registry
from college_attendance.storage.partition_store import PartitionStore


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main():
    parser = argparse.ArgumentParser(description='Create shared tables and optionally pre-create partitions.')
    parser.add_argument('--partitions', action='store_true', help='also create every student and subject partition')
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    logger.info('Shared tables ready: %s', sorted(Base.metadata.tables))
    if not args.partitions:
        return
    store = PartitionStore(engine)
    for descriptor in stream_registry:
        for semester in descriptor.allowed_semesters:
            store.students(descriptor.display_name, semester)
            store.subjects(descriptor.display_name, semester)
    logger.info('Bootstrap created %s partitions', len(store))


if __name__ == '__main__':
    main()
