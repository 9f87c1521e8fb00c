import copy
import json
import logging
import os
import re
import time
from typing import Any, Dict, List, Optional

from models import CourseRecord, utcnow

logger = logging.getLogger(__name__)

FILE_BACKEND = 'file'
DATABASE_BACKEND = 'database'
DEMO_BACKEND = 'demo'

DEMO_COURSES = [
    {
        'id': 'demo-math-135',
        'name': 'MATH 135 - Calculus I',
        'assessments': [
            {'id': 'quiz1', 'name': 'Quiz 1', 'category': 'Quizzes', 'max': 100, 'weight': 5},
            {'id': 'quiz2', 'name': 'Quiz 2', 'category': 'Quizzes', 'max': 100, 'weight': 5},
            {'id': 'quiz3', 'name': 'Quiz 3', 'category': 'Quizzes', 'max': 100, 'weight': 5},
            {'id': 'quiz4', 'name': 'Quiz 4', 'category': 'Quizzes', 'max': 100, 'weight': 5},
            {'id': 'midterm', 'name': 'Midterm Exam', 'category': 'Exams', 'max': 100, 'weight': 30},
            {'id': 'final', 'name': 'Final Exam', 'category': 'Exams', 'max': 100, 'weight': 50},
        ],
    },
    {
        'id': 'demo-cs-101',
        'name': 'CS 101 - Introduction to Programming',
        'assessments': [
            {'id': 'hw1', 'name': 'Homework 1', 'category': 'Assignments', 'max': 100, 'weight': 10},
            {'id': 'hw2', 'name': 'Homework 2', 'category': 'Assignments', 'max': 100, 'weight': 10},
            {'id': 'hw3', 'name': 'Homework 3', 'category': 'Assignments', 'max': 100, 'weight': 10},
            {'id': 'project1', 'name': 'Project 1', 'category': 'Projects', 'max': 100, 'weight': 20},
            {'id': 'project2', 'name': 'Project 2', 'category': 'Projects', 'max': 100, 'weight': 20},
            {'id': 'final', 'name': 'Final Exam', 'category': 'Exams', 'max': 100, 'weight': 30},
        ],
    },
]


def timestamp() -> str:
    return utcnow().isoformat()


def make_course_id(course_name: str, millis: Optional[int] = None) -> str:
    """Slug of the course name plus a millisecond timestamp, e.g. 'math-135-1718000000000'."""
    slug = re.sub(r'\s+', '-', course_name.lower())
    slug = re.sub(r'[^a-z0-9-]', '', slug)
    if millis is None:
        millis = int(time.time() * 1000)
    return f"{slug}-{millis}"


def new_course(course_name: str, assessments: List[Dict[str, Any]], file_name: Optional[str] = None) -> Dict[str, Any]:
    course = {
        'name': course_name,
        'assessments': assessments,
        'grades': {},
        'createdAt': timestamp(),
    }
    if file_name:
        course['fileName'] = file_name
    return course


def merge_course_update(existing: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow-merge client updates over a stored course; the id is never overwritten."""
    merged = dict(existing)
    merged.update({key: value for key, value in updates.items() if key != 'id'})
    merged['updatedAt'] = timestamp()
    return merged


class Storage:
    """
    Per-course persistence capability.

    Courses are plain dicts; get() returns None for unknown ids and delete()
    returns whether anything was removed.
    """

    read_only = False

    def list(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def get(self, course_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def put(self, course_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def delete(self, course_id: str) -> bool:
        raise NotImplementedError


class FileStorage(Storage):
    """One {course_id}.json file per course, next to the uploaded outline files."""

    def __init__(self, courses_dir: str):
        self.courses_dir = courses_dir
        os.makedirs(self.courses_dir, exist_ok=True)

    def _course_path(self, course_id: str) -> str:
        if os.path.basename(course_id) != course_id or course_id in ('', '.', '..'):
            raise ValueError(f"Invalid course id: {course_id}")
        return os.path.join(self.courses_dir, f"{course_id}.json")

    def list(self):
        courses = []
        for file_name in sorted(os.listdir(self.courses_dir)):
            if file_name.endswith('.json'):
                with open(os.path.join(self.courses_dir, file_name), 'r', encoding='utf-8') as f:
                    course_data = json.load(f)
                courses.append(dict(course_data, id=file_name[:-len('.json')]))
        return courses

    def get(self, course_id):
        path = self._course_path(course_id)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return dict(json.load(f), id=course_id)

    def put(self, course_id, data):
        stored = {key: value for key, value in data.items() if key != 'id'}
        with open(self._course_path(course_id), 'w', encoding='utf-8') as f:
            json.dump(stored, f, indent=2)
        return dict(stored, id=course_id)

    def delete(self, course_id):
        path = self._course_path(course_id)
        if not os.path.exists(path):
            return False

        with open(path, 'r', encoding='utf-8') as f:
            course_data = json.load(f)
        os.remove(path)

        file_name = course_data.get('fileName')
        if file_name:
            outline_path = os.path.join(self.courses_dir, os.path.basename(file_name))
            if os.path.exists(outline_path):
                os.remove(outline_path)
                logger.info(f"Removed outline file {file_name} of course {course_id}")
        return True


class DatabaseStorage(Storage):
    """Courses stored through Flask-SQLAlchemy; must be used inside an app context."""

    def __init__(self, db):
        self.db = db

    def list(self):
        return [record.to_dict() for record in CourseRecord.query.order_by(CourseRecord.created_at).all()]

    def get(self, course_id):
        record = self.db.session.get(CourseRecord, course_id)
        return record.to_dict() if record else None

    def put(self, course_id, data):
        record = self.db.session.get(CourseRecord, course_id)
        if record is None:
            record = CourseRecord(id=course_id)
            self.db.session.add(record)
        record.update_from_dict(data)
        self.db.session.commit()
        return record.to_dict()

    def delete(self, course_id):
        record = self.db.session.get(CourseRecord, course_id)
        if record is None:
            return False
        self.db.session.delete(record)
        self.db.session.commit()
        return True


class DemoStorage(Storage):
    """Read-only catalogue of sample courses; writes are ignored."""

    read_only = True

    def __init__(self, courses: Optional[List[Dict[str, Any]]] = None):
        self.courses = courses if courses is not None else DEMO_COURSES

    def _fresh(self, course):
        now = timestamp()
        return dict(copy.deepcopy(course), grades={}, createdAt=now, updatedAt=now)

    def list(self):
        return [self._fresh(course) for course in self.courses]

    def get(self, course_id):
        for course in self.courses:
            if course['id'] == course_id:
                return self._fresh(course)
        return self._fresh(self.courses[0])

    def put(self, course_id, data):
        logger.info(f"Demo mode - course {course_id} not saved")
        return dict(data, id=course_id)

    def delete(self, course_id):
        logger.info(f"Demo mode - course {course_id} not deleted")
        return False


def create_storage(backend: str, courses_dir: Optional[str] = None, db=None) -> Storage:
    backend = (backend or FILE_BACKEND).lower()
    if backend == FILE_BACKEND:
        return FileStorage(courses_dir or os.path.join('data', 'courses'))
    if backend == DATABASE_BACKEND:
        if db is None:
            raise ValueError("Database storage requires a SQLAlchemy instance")
        return DatabaseStorage(db)
    if backend == DEMO_BACKEND:
        return DemoStorage()
    raise ValueError(f"Unknown storage backend: {backend}")
