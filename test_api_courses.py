import io
import json
import os
import shutil
import tempfile
import unittest

from app import app, init_services
from openai_helper import CompletionUnavailable
from storage import DemoStorage

OUTLINE_TEXT = """
COURSE OUTLINE
PSYC 201 - Introduction to Psychology

Instructor: Dr. John Smith

Evaluation:
Quiz 1, Quiz 2, Quiz 3
Midterm Examination: 30% (October 15, in class)
Final Examination: 40% (December 15, location TBA)
"""

AI_RESPONSE = json.dumps([
    {"name": "Quiz 1", "category": "Quizzes", "max": 20, "weight": 25},
    {"name": "Midterm Exam", "category": "Exams", "max": 100, "weight": 25},
    {"name": "Final Exam", "category": "Exams", "max": 100, "weight": 50},
])


class FakeCompletionClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = 0

    def complete(self, prompt):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response


class CourseAPITestCase(unittest.TestCase):
    def setUp(self):
        app.config['TESTING'] = True
        self.tempdir = tempfile.mkdtemp()
        app.config['COURSE_STORAGE'] = 'file'
        app.config['COURSES_DIR'] = self.tempdir
        app.config['OPENAI_API_KEY'] = ''
        init_services(app)
        self.completion = FakeCompletionClient(AI_RESPONSE)
        app.extensions['completion_client'] = self.completion
        self.client = app.test_client()

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def create_course(self, name='PSYC 201', text=OUTLINE_TEXT):
        response = self.client.post('/api/courses', json={'courseName': name, 'document_text': text})
        self.assertEqual(response.status_code, 201)
        return response.get_json()


class TestCreateCourse(CourseAPITestCase):
    def test_create_from_document_text(self):
        course = self.create_course()

        self.assertTrue(course['id'].startswith('psyc-201-'))
        self.assertEqual(course['name'], 'PSYC 201')
        self.assertEqual([a['id'] for a in course['assessments']],
                         ['assessment-1', 'assessment-2', 'assessment-3'])
        self.assertEqual([a['weight'] for a in course['assessments']], [25.0, 25.0, 50.0])
        self.assertEqual(self.completion.calls, 1)
        self.assertTrue(os.path.exists(os.path.join(self.tempdir, f"{course['id']}.json")))

    def test_create_from_file_upload(self):
        response = self.client.post(
            '/api/courses',
            data={'courseName': 'PSYC 201', 'file': (io.BytesIO(OUTLINE_TEXT.encode('utf-8')), 'outline.txt')},
            content_type='multipart/form-data'
        )

        self.assertEqual(response.status_code, 201)
        course = response.get_json()
        self.assertEqual(course['fileName'], f"{course['id']}.txt")
        self.assertTrue(os.path.exists(os.path.join(self.tempdir, course['fileName'])))
        self.assertEqual(len(course['assessments']), 3)

    def test_completion_failure_falls_back(self):
        app.extensions['completion_client'] = FakeCompletionClient(error=CompletionUnavailable('quota'))
        course = self.create_course()

        names = [a['name'] for a in course['assessments']]
        self.assertEqual(names[:3], ['Quiz 1', 'Quiz 2', 'Quiz 3'])
        self.assertAlmostEqual(sum(a['weight'] for a in course['assessments']), 100, delta=0.02)

    def test_no_completion_client(self):
        app.extensions['completion_client'] = None
        course = self.create_course()
        self.assertTrue(course['assessments'])

    def test_image_upload_rejected(self):
        response = self.client.post(
            '/api/courses',
            data={'courseName': 'PSYC 201', 'file': (io.BytesIO(b'\x89PNG'), 'outline.png')},
            content_type='multipart/form-data'
        )

        self.assertEqual(response.status_code, 415)
        self.assertIn('PDF or HTML', response.get_json()['error'])
        self.assertEqual(os.listdir(self.tempdir), [])

    def test_missing_fields(self):
        response = self.client.post('/api/courses', data={'courseName': 'PSYC 201'},
                                    content_type='multipart/form-data')
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.get_json())

        response = self.client.post('/api/courses', json={'document_text': OUTLINE_TEXT})
        self.assertEqual(response.status_code, 400)


class TestCourseCrud(CourseAPITestCase):
    def test_list_and_get(self):
        course = self.create_course()

        listed = self.client.get('/api/courses').get_json()
        self.assertEqual([c['id'] for c in listed], [course['id']])

        fetched = self.client.get(f"/api/courses/{course['id']}").get_json()
        self.assertEqual(fetched['assessments'], course['assessments'])

    def test_get_missing(self):
        response = self.client.get('/api/courses/missing-course')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {'error': 'Course not found'})

    def test_update(self):
        course = self.create_course()
        assessments = course['assessments'] + [
            {'id': 'assessment-extra', 'name': 'Lab', 'category': 'Labs', 'max': 100, 'weight': 10}
        ]

        response = self.client.put(f"/api/courses/{course['id']}",
                                   json={'name': 'PSYC 201 (Fall)', 'assessments': assessments})

        self.assertEqual(response.status_code, 200)
        updated = response.get_json()
        self.assertEqual(updated['name'], 'PSYC 201 (Fall)')
        self.assertEqual(len(updated['assessments']), 4)
        self.assertIn('updatedAt', updated)

    def test_update_requires_object(self):
        course = self.create_course()
        response = self.client.put(f"/api/courses/{course['id']}", json=[1, 2])
        self.assertEqual(response.status_code, 400)

    def test_delete(self):
        course = self.create_course()

        response = self.client.delete(f"/api/courses/{course['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/api/courses/{course['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/courses/{course['id']}").status_code, 404)


class TestGradesAndSummary(CourseAPITestCase):
    def test_grades_round_trip(self):
        course = self.create_course()
        grades = {'assessment-1': {'earned': 15, 'max': 20}}

        response = self.client.put(f"/api/courses/{course['id']}/grades", json=grades)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['grades'], grades)

        stored = self.client.get(f"/api/courses/{course['id']}/grades").get_json()
        self.assertEqual(stored['grades'], grades)
        self.assertIsNotNone(stored['updatedAt'])

    def test_summary_from_stored_grades(self):
        course = self.create_course()
        self.client.put(f"/api/courses/{course['id']}/grades",
                        json={'assessment-1': {'earned': 10}, 'assessment-2': {'earned': 80}})

        summary = self.client.get(f"/api/courses/{course['id']}/summary").get_json()

        # Quiz 10/20 of 25 -> 12.5, midterm 80/100 of 25 -> 20
        self.assertAlmostEqual(summary['overall_grade'], 32.5)
        self.assertAlmostEqual(summary['standing'], 0.65)
        self.assertAlmostEqual(summary['contributions']['Quizzes'], 12.5)
        self.assertAlmostEqual(summary['contributions']['Exams'], 20)
        self.assertEqual(summary['completed_count'], 2)
        self.assertEqual(summary['assessment_count'], 3)
        self.assertFalse(summary['weight_warning'])

    def test_summary_for_posted_scores_not_saved(self):
        course = self.create_course()

        response = self.client.post(f"/api/courses/{course['id']}/summary",
                                    json={'assessment-3': {'earned': 100}})
        self.assertAlmostEqual(response.get_json()['overall_grade'], 50)

        stored = self.client.get(f"/api/courses/{course['id']}/grades").get_json()
        self.assertEqual(stored['grades'], {})

    def test_summary_without_grades(self):
        course = self.create_course()
        summary = self.client.get(f"/api/courses/{course['id']}/summary").get_json()

        self.assertEqual(summary['standing'], 0)
        self.assertEqual(summary['contributions'], {'Quizzes': 0, 'Exams': 0})

    def test_grades_for_missing_course(self):
        self.assertEqual(self.client.get('/api/courses/missing/grades').status_code, 404)
        self.assertEqual(self.client.put('/api/courses/missing/grades', json={}).status_code, 404)
        self.assertEqual(self.client.get('/api/courses/missing/summary').status_code, 404)


class TestDemoMode(unittest.TestCase):
    def setUp(self):
        app.config['TESTING'] = True
        self.previous_storage = app.extensions['course_storage']
        app.extensions['course_storage'] = DemoStorage()
        self.client = app.test_client()

    def tearDown(self):
        app.extensions['course_storage'] = self.previous_storage

    def test_demo_courses_listed(self):
        courses = self.client.get('/api/courses').get_json()
        self.assertEqual(len(courses), 2)

    def test_writes_are_not_saved(self):
        created = self.client.post('/api/courses', json={'courseName': 'X', 'document_text': 'Quiz 1'})
        self.assertEqual(created.get_json()['id'], 'demo-math-135')

        updated = self.client.put('/api/courses/demo-math-135', json={'name': 'Changed'})
        self.assertEqual(updated.get_json()['message'], 'Demo mode - changes not saved')

        deleted = self.client.delete('/api/courses/demo-math-135')
        self.assertEqual(deleted.get_json()['message'], 'Demo mode - course not deleted')

        grades = self.client.put('/api/courses/demo-math-135/grades', json={'quiz1': {'earned': 90}})
        self.assertEqual(grades.get_json(), {'message': 'Demo mode - grades not saved', 'grades': {}})

    def test_demo_summary(self):
        summary = self.client.post('/api/courses/demo-cs-101/summary',
                                   json={'final': {'earned': 90}}).get_json()
        self.assertAlmostEqual(summary['overall_grade'], 27)
        self.assertAlmostEqual(summary['standing'], 0.9)


if __name__ == '__main__':
    unittest.main()
