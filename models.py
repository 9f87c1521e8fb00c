import json
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

# Initialize SQLAlchemy
db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


class CourseRecord(db.Model):
    """Course with its assessments and entered grades, stored as JSON text."""
    __tablename__ = 'course'

    id = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(256), nullable=False)
    file_name = db.Column(db.String(512), nullable=True)
    assessments_json = db.Column(db.Text, nullable=False, default='[]')
    grades_json = db.Column(db.Text, nullable=False, default='{}')
    created_at = db.Column(db.String(40), nullable=False)
    updated_at = db.Column(db.String(40), nullable=True)

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'assessments': json.loads(self.assessments_json or '[]'),
            'grades': json.loads(self.grades_json or '{}'),
            'createdAt': self.created_at,
        }
        if self.file_name:
            data['fileName'] = self.file_name
        if self.updated_at:
            data['updatedAt'] = self.updated_at
        return data

    def update_from_dict(self, data):
        self.name = data.get('name', self.name)
        self.file_name = data.get('fileName', self.file_name)
        self.assessments_json = json.dumps(data.get('assessments', []))
        self.grades_json = json.dumps(data.get('grades', {}))
        self.created_at = data.get('createdAt') or self.created_at or utcnow().isoformat()
        self.updated_at = data.get('updatedAt', self.updated_at)

    def __repr__(self):
        return f'<CourseRecord {self.id}>'
