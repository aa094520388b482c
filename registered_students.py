from flask import Blueprint, request, jsonify, current_app
from models import db, RegisteredStudent
from auth import roles_required
import re
import logging

registered_students_bp = Blueprint('registered_students', __name__)
logger = logging.getLogger(__name__)

UPI_PATTERN = re.compile(r'^[a-z0-9]{4,8}$')

# ============================================
# Registered Student Service
# ============================================

def normalize_upi(upi):
    return upi.strip().lower() if isinstance(upi, str) else ''

def clean_student_row(row):
    """
    檢查一筆學生資料,不合格回傳 None

    Returns:
        dict | None: {'upi', 'name', 'team_name'}
    """
    if not isinstance(row, dict):
        return None

    upi = normalize_upi(row.get('upi'))
    name = row.get('name')
    if not UPI_PATTERN.match(upi) or not isinstance(name, str) or not name.strip():
        return None

    team_name = row.get('teamName') or row.get('team_name')
    team_name = team_name.strip() if isinstance(team_name, str) and team_name.strip() else None

    return {'upi': upi, 'name': name.strip()[:100], 'team_name': team_name}

def bulk_upsert_students(rows):
    """
    批次新增或更新學生 (用 upi 比對)

    不合格的資料直接跳過

    Returns:
        tuple: (ok, stats_or_message)
    """
    if not rows:
        return False, 'No students provided'

    students = {}
    for row in rows:
        cleaned = clean_student_row(row)
        if cleaned:
            # 同一個 upi 以最後一筆為準
            students[cleaned['upi']] = cleaned

    if not students:
        return False, 'No valid students found'

    existing = {
        s.upi: s for s in RegisteredStudent.query.filter(
            RegisteredStudent.upi.in_(list(students.keys()))
        ).all()
    }

    inserted = updated = 0
    for upi, data in students.items():
        record = existing.get(upi)
        if record:
            record.name = data['name']
            record.team_name = data['team_name']
            updated += 1
        else:
            db.session.add(RegisteredStudent(**data))
            inserted += 1

    db.session.commit()

    logger.info(f"Registered students upserted: {inserted} inserted, {updated} updated")
    return True, {
        'total': len(students),
        'inserted': inserted,
        'updated': updated,
        'skipped': len(rows) - len(students)
    }

def get_students_page(page=1, limit=100):
    """依名字排序的分頁列表"""
    pagination = RegisteredStudent.query.order_by(
        RegisteredStudent.name, RegisteredStudent.id
    ).paginate(page=page, per_page=limit, error_out=False)

    return {
        'students': [
            {'upi': s.upi, 'name': s.name, 'teamName': s.team_name}
            for s in pagination.items
        ],
        'pagination': {
            'currentPage': page,
            'totalPages': pagination.pages,
            'totalItems': pagination.total,
            'itemsPerPage': limit
        }
    }

def remove_student(upi):
    deleted = RegisteredStudent.query.filter_by(upi=normalize_upi(upi)).delete()
    db.session.commit()
    return deleted > 0

def clear_all_students():
    deleted = RegisteredStudent.query.delete()
    db.session.commit()
    logger.info(f"Cleared {deleted} registered students")
    return deleted

# ============================================
# 學生名單 API (admin / staff)
# ============================================

@registered_students_bp.route('', methods=['GET'])
@roles_required('admin', 'staff')
def list_students():
    page = max(request.args.get('page', 1, type=int), 1)
    limit = request.args.get('limit', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    limit = min(max(limit, 1), current_app.config['MAX_PAGE_SIZE'])

    return jsonify(get_students_page(page, limit)), 200

@registered_students_bp.route('', methods=['POST'])
@roles_required('admin', 'staff')
def add_students():
    data = request.get_json(silent=True) or {}
    students = data.get('students')
    if not isinstance(students, list):
        return jsonify({'error': 'students must be a list'}), 400

    try:
        ok, result = bulk_upsert_students(students)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding registered students: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to add students to database'}), 500

    if not ok:
        return jsonify({'error': result}), 400

    return jsonify({
        'message': f"Successfully processed {result['total']} students",
        'stats': result
    }), 200

@registered_students_bp.route('/<upi>', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_student(upi):
    try:
        removed = remove_student(upi)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing registered student {upi}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to remove student'}), 500

    if not removed:
        return jsonify({'error': 'Student not found'}), 404
    return jsonify({'message': 'Student removed successfully'}), 200

@registered_students_bp.route('', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_all_students():
    try:
        deleted = clear_all_students()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error clearing registered students: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to clear students'}), 500

    return jsonify({'message': f'Removed {deleted} students'}), 200
