from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from college_attendance.db import Base, engine
from college_attendance import models  # noqa: F401
from college_attendance.errors import DuplicateStudent, DuplicateSubject
from college_attendance.services.student_service import create_student
from college_attendance.services.subject_service import create_subject
from college_attendance.storage.partition_store import PartitionStore


Base.metadata.create_all(bind=engine)
store = PartitionStore(engine)

demo_students = [
    {'student_id': 'BCA1001', 'name': 'Aarav', 'parent_phone': '9999990001', 'language_choice': 'KANNADA'},
    {'student_id': 'BCA1002', 'name': 'Diya', 'parent_phone': '9999990002', 'language_choice': 'HINDI'},
    {'student_id': 'BCA1003', 'name': 'Ishaan', 'parent_phone': '9999990003', 'language_choice': 'KANNADA'},
]
demo_subjects = [
    {'subject_name': 'Data Structures'},
    {'subject_name': 'Operating Systems'},
    {'subject_name': 'Kannada', 'subject_type': 'LANGUAGE', 'language_type': 'KANNADA'},
    {'subject_name': 'Hindi', 'subject_type': 'LANGUAGE', 'language_type': 'HINDI'},
]

for payload in demo_students:
    try:
        create_student(store, 'BCA', 1, payload)
    except DuplicateStudent:
        pass
for payload in demo_subjects:
    try:
        create_subject(store, 'BCA', 1, payload)
    except DuplicateSubject:
        pass

print('DB initialized with sample data.')
