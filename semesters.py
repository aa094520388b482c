from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate, validates_schema, ValidationError
from models import db, Semester, Project, SEMESTER_TERMS
from auth import roles_required, validate_request_data
import logging

semesters_bp = Blueprint('semesters', __name__)
logger = logging.getLogger(__name__)

SEMESTER_EXISTS = 'SEMESTER_EXISTS'
SEMESTER_NOT_FOUND = 'SEMESTER_NOT_FOUND'
SEMESTER_IN_USE = 'SEMESTER_IN_USE'
DELETE_FILTER_REQUIRED = 'DELETE_FILTER_REQUIRED'

# ============================================
# Input Validation Schemas
# ============================================

class SemesterSchema(Schema):
    year = fields.Int(required=True, validate=validate.Range(min=2000, max=2100))
    semester = fields.Str(required=True, validate=validate.OneOf(SEMESTER_TERMS))
    isActive = fields.Bool()
    startDate = fields.DateTime(allow_none=True)
    endDate = fields.DateTime(allow_none=True)

    @validates_schema
    def validate_dates(self, data, **kwargs):
        start, end = data.get('startDate'), data.get('endDate')
        if start and end and end < start:
            raise ValidationError('endDate must not be before startDate', 'endDate')

class DeleteFilterSchema(Schema):
    year = fields.Int(validate=validate.Range(min=2000, max=2100))
    semester = fields.Str(validate=validate.OneOf(SEMESTER_TERMS))

# ============================================
# Semester Service
# ============================================

def serialize_semester(semester):
    return {
        'id': semester.id,
        'year': semester.year,
        'semester': semester.semester,
        'isActive': semester.is_active,
        'startDate': semester.start_date.isoformat() if semester.start_date else None,
        'endDate': semester.end_date.isoformat() if semester.end_date else None,
        'createdAt': semester.created_at.isoformat() if semester.created_at else None
    }

def get_semesters(year=None, term=None, is_active=None):
    """依年份 (新到舊) 和學期 (S1 在前) 排序"""
    query = Semester.query
    if year is not None:
        query = query.filter_by(year=year)
    if term:
        query = query.filter_by(semester=term)
    if is_active is not None:
        query = query.filter_by(is_active=is_active)
    return query.order_by(Semester.year.desc(), Semester.semester.asc()).all()

def delete_semesters(semester_id=None, year=None, term=None):
    """
    刪除學期 (用 id,或用 year / semester 篩選)

    還有專案的學期不能刪除

    Returns:
        tuple: (ok, deleted_count_or_error_code)
    """
    if semester_id is not None:
        semester = db.session.get(Semester, semester_id)
        if not semester:
            return False, SEMESTER_NOT_FOUND
        targets = [semester]
    else:
        if year is None and term is None:
            return False, DELETE_FILTER_REQUIRED
        targets = get_semesters(year=year, term=term)

    target_ids = [s.id for s in targets]
    if target_ids and Project.query.filter(Project.semester_id.in_(target_ids)).first():
        return False, SEMESTER_IN_USE

    for semester in targets:
        db.session.delete(semester)
    db.session.commit()

    return True, len(targets)

def parse_bool_arg(value):
    if value is None:
        return None
    return value.lower() in ('true', '1', 'yes')

# ============================================
# 學期 API
# ============================================

@semesters_bp.route('', methods=['GET'])
def list_semesters():
    """
    Query Parameters:
        year, semester, isActive
    """
    term = request.args.get('semester')
    if term and term not in SEMESTER_TERMS:
        return jsonify({'error': 'Invalid semester'}), 400

    semesters = get_semesters(
        year=request.args.get('year', type=int),
        term=term,
        is_active=parse_bool_arg(request.args.get('isActive'))
    )
    return jsonify({'semesters': [serialize_semester(s) for s in semesters]}), 200

@semesters_bp.route('/<int:semester_id>', methods=['GET'])
def get_semester(semester_id):
    semester = db.session.get(Semester, semester_id)
    if not semester:
        return jsonify({'error': SEMESTER_NOT_FOUND}), 404
    return jsonify({'semester': serialize_semester(semester)}), 200

@semesters_bp.route('', methods=['POST'])
@roles_required('admin', 'staff')
def create_semester():
    is_valid, result = validate_request_data(SemesterSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if Semester.query.filter_by(year=result['year'], semester=result['semester']).first():
        return jsonify({'error': SEMESTER_EXISTS}), 409

    try:
        semester = Semester(
            year=result['year'],
            semester=result['semester'],
            is_active=result.get('isActive', True),
            start_date=result.get('startDate'),
            end_date=result.get('endDate')
        )
        db.session.add(semester)
        db.session.commit()

        logger.info(f"Semester created: {semester.year} {semester.semester}")
        return jsonify({'message': 'Semester created', 'semester': serialize_semester(semester)}), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating semester: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

def _delete_response(ok, result):
    if not ok:
        status = 404 if result == SEMESTER_NOT_FOUND else 400
        return jsonify({'error': result}), status
    return jsonify({'message': 'Semester(s) deleted', 'deletedCount': result}), 200

@semesters_bp.route('/<int:semester_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_semester(semester_id):
    try:
        ok, result = delete_semesters(semester_id=semester_id)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting semester {semester_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
    return _delete_response(ok, result)

@semesters_bp.route('', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_semesters_by_filter():
    is_valid, result = validate_request_data(DeleteFilterSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    try:
        ok, deleted = delete_semesters(year=result.get('year'), term=result.get('semester'))
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting semesters: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
    return _delete_response(ok, deleted)
