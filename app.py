from flask import Flask, request, jsonify, current_app
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename
import os
import logging

from assessment_extractor import extract_assessments
from document_processor import TEXT, UnsupportedSourceKind, detect_source_kind, extract_text
from grade_calculator import categories_of, compute_grade_summary
from models import db
from openai_helper import DEFAULT_MODEL, DEFAULT_TIMEOUT, create_completion_client
from storage import (
    DATABASE_BACKEND,
    create_storage,
    make_course_id,
    merge_course_update,
    new_course,
    timestamp,
)

# Configure logging with more detailed output
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get('SESSION_SECRET', 'dev_secret_key')
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max file size

app.config['OPENAI_API_KEY'] = os.environ.get('OPENAI_API_KEY')
app.config['OPENAI_MODEL'] = os.environ.get('OPENAI_MODEL', DEFAULT_MODEL)
app.config['OPENAI_TIMEOUT'] = float(os.environ.get('OPENAI_TIMEOUT', DEFAULT_TIMEOUT))

app.config['COURSE_STORAGE'] = os.environ.get('COURSE_STORAGE', 'file')
app.config['COURSES_DIR'] = os.environ.get('COURSES_DIR', os.path.join('data', 'courses'))
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///courses.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

db.init_app(app)


def init_services(flask_app):
    """(Re)build the storage backend and completion client from flask_app.config."""
    backend = flask_app.config['COURSE_STORAGE']
    if backend == DATABASE_BACKEND:
        with flask_app.app_context():
            db.create_all()

    flask_app.extensions['course_storage'] = create_storage(
        backend, courses_dir=flask_app.config['COURSES_DIR'], db=db)
    flask_app.extensions['completion_client'] = create_completion_client(
        flask_app.config['OPENAI_API_KEY'] or '',
        model=flask_app.config['OPENAI_MODEL'],
        timeout=flask_app.config['OPENAI_TIMEOUT'])
    logger.info(f"Course storage backend: {backend}")


def get_storage():
    return current_app.extensions['course_storage']


def get_completion_client():
    return current_app.extensions.get('completion_client')


@app.errorhandler(Exception)
def handle_error(e):
    """Return every error as JSON; unexpected ones become a 500."""
    if isinstance(e, HTTPException):
        return jsonify({'error': e.description}), e.code

    logger.exception(f"Unhandled error: {str(e)}")
    return jsonify({'error': 'An error occurred while processing your request.'}), 500


def _not_found():
    return jsonify({'error': 'Course not found'}), 404


def _outline_from_request(course_id):
    """
    Read the outline text and its source kind from the upload.

    Returns (text, source_kind, stored_file_name).
    """
    if request.is_json:
        return request.get_json()['document_text'], TEXT, None

    outline = request.files['file']
    source_kind = detect_source_kind(outline.filename, outline.mimetype)

    _, extension = os.path.splitext(secure_filename(outline.filename))
    file_name = f"{course_id}{extension.lower()}"
    upload_dir = current_app.config['COURSES_DIR']
    os.makedirs(upload_dir, exist_ok=True)
    outline_path = os.path.join(upload_dir, file_name)
    outline.save(outline_path)

    try:
        document_text = extract_text(outline_path, source_kind)
    except UnsupportedSourceKind:
        os.remove(outline_path)
        raise
    except ValueError as e:
        # Unreadable documents still get the default assessments
        logger.warning(f"Could not extract text from {outline.filename}: {str(e)}")
        document_text = ''
    return document_text, source_kind, file_name


@app.route('/api/courses', methods=['GET'])
def list_courses():
    return jsonify(get_storage().list())


@app.route('/api/courses', methods=['POST'])
def create_course():
    """
    Create a course from an uploaded outline.

    Expected request format:
    - multipart/form-data with a 'file' field and a 'courseName' field
    OR
    - application/json with 'courseName' and 'document_text'
    """
    storage = get_storage()
    if storage.read_only:
        return jsonify(storage.list()[0])

    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({'error': 'Expected a JSON object'}), 400
        course_name = str(payload.get('courseName') or '')
        has_outline = isinstance(payload.get('document_text'), str)
    else:
        course_name = request.form.get('courseName', '')
        has_outline = 'file' in request.files and request.files['file'].filename != ''

    if not course_name.strip() or not has_outline:
        return jsonify({'error': 'File and course name are required'}), 400

    course_id = make_course_id(course_name)
    try:
        document_text, source_kind, file_name = _outline_from_request(course_id)
        logger.info(f"Extracting assessments for course {course_id} ({source_kind}, {len(document_text)} chars)")
        assessments = extract_assessments(document_text, source_kind, get_completion_client())
    except UnsupportedSourceKind as e:
        logger.warning(f"Unsupported upload for course {course_id}: {e.message}")
        return jsonify({'error': e.message}), 415

    course = storage.put(course_id, new_course(course_name, assessments, file_name))
    logger.info(f"Created course {course_id} with {len(assessments)} assessments")
    return jsonify(course), 201


@app.route('/api/courses/<course_id>', methods=['GET'])
def get_course(course_id):
    course = get_storage().get(course_id)
    if course is None:
        return _not_found()
    return jsonify(course)


@app.route('/api/courses/<course_id>', methods=['PUT'])
def update_course(course_id):
    storage = get_storage()
    if storage.read_only:
        return jsonify({'message': 'Demo mode - changes not saved'})

    existing = storage.get(course_id)
    if existing is None:
        return _not_found()

    updates = request.get_json(silent=True)
    if not isinstance(updates, dict):
        return jsonify({'error': 'Expected a JSON object'}), 400

    return jsonify(storage.put(course_id, merge_course_update(existing, updates)))


@app.route('/api/courses/<course_id>', methods=['DELETE'])
def delete_course(course_id):
    storage = get_storage()
    if storage.read_only:
        return jsonify({'message': 'Demo mode - course not deleted'})

    if not storage.delete(course_id):
        return _not_found()
    return jsonify({'message': 'Course deleted successfully'})


@app.route('/api/courses/<course_id>/grades', methods=['GET'])
def get_grades(course_id):
    storage = get_storage()
    if storage.read_only:
        return jsonify({'grades': {}, 'updatedAt': timestamp()})

    course = storage.get(course_id)
    if course is None:
        return _not_found()
    return jsonify({'grades': course.get('grades') or {}, 'updatedAt': course.get('updatedAt')})


@app.route('/api/courses/<course_id>/grades', methods=['PUT'])
def save_grades(course_id):
    storage = get_storage()
    if storage.read_only:
        return jsonify({'message': 'Demo mode - grades not saved', 'grades': {}})

    course = storage.get(course_id)
    if course is None:
        return _not_found()

    grades = request.get_json(silent=True)
    if not isinstance(grades, dict):
        return jsonify({'error': 'Expected a JSON object of grades'}), 400

    storage.put(course_id, merge_course_update(course, {'grades': grades}))
    return jsonify({'message': 'Grades saved successfully', 'grades': grades})


@app.route('/api/courses/<course_id>/summary', methods=['GET', 'POST'])
def grade_summary(course_id):
    """
    Grade figures for a course.

    GET uses the stored grades; POST computes over the posted score map
    without saving it.
    """
    course = get_storage().get(course_id)
    if course is None:
        return _not_found()

    if request.method == 'POST':
        scores = request.get_json(silent=True)
        if not isinstance(scores, dict):
            return jsonify({'error': 'Expected a JSON object of grades'}), 400
    else:
        scores = course.get('grades') or {}

    assessments = course.get('assessments') or []
    summary = compute_grade_summary(assessments, scores, categories_of(assessments))
    return jsonify(summary)


init_services(app)

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
