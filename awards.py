from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validate
from models import db, Award, Project, AWARD_CATEGORIES
from auth import roles_required, validate_request_data
import logging

awards_bp = Blueprint('awards', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class AwardSchema(Schema):
    """建立獎項驗證 (更新時用 partial=True)"""
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    iconUrl = fields.Str(validate=validate.Length(max=500))
    description = fields.Str(required=True, validate=validate.Length(min=1))
    category = fields.Str(required=True, validate=validate.OneOf(AWARD_CATEGORIES))

# ============================================
# 輔助函數
# ============================================

def serialize_award(award):
    return {
        'id': award.id,
        'name': award.name,
        'iconUrl': award.icon_url,
        'description': award.description,
        'category': award.category,
        'createdAt': award.created_at.isoformat() if award.created_at else None,
        'updatedAt': award.updated_at.isoformat() if award.updated_at else None
    }

def award_name_taken(name, exclude_id=None):
    query = Award.query.filter(Award.name == name)
    if exclude_id:
        query = query.filter(Award.id != exclude_id)
    return query.first() is not None

def get_project_and_award(project_id, award_id):
    """
    Returns:
        tuple: (project, award, error_response)
    """
    project = db.session.get(Project, project_id)
    if not project:
        return None, None, (jsonify({'error': 'Project not found'}), 404)
    award = db.session.get(Award, award_id)
    if not award:
        return None, None, (jsonify({'error': 'Award not found'}), 404)
    return project, award, None

# ============================================
# 獎項 API
# ============================================

@awards_bp.route('', methods=['GET'])
def get_all_awards():
    """取得所有獎項,可用 ?category= 篩選"""
    query = Award.query

    category = request.args.get('category')
    if category:
        if category not in AWARD_CATEGORIES:
            return jsonify({'error': 'Invalid award category'}), 400
        query = query.filter_by(category=category)

    awards = query.order_by(Award.created_at.desc(), Award.id.desc()).all()
    return jsonify({'awards': [serialize_award(a) for a in awards]}), 200

@awards_bp.route('/<int:award_id>', methods=['GET'])
def get_award(award_id):
    award = db.session.get(Award, award_id)
    if not award:
        return jsonify({'error': 'Award not found'}), 404
    return jsonify({'award': serialize_award(award)}), 200

@awards_bp.route('', methods=['POST'])
@roles_required('admin', 'staff')
def create_award():
    is_valid, result = validate_request_data(AwardSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if award_name_taken(result['name']):
        return jsonify({'error': 'Award with this name already exists'}), 409

    try:
        award = Award(
            name=result['name'],
            icon_url=result.get('iconUrl') or current_app.config['DEFAULT_AWARD_ICON_URL'],
            description=result['description'],
            category=result['category']
        )
        db.session.add(award)
        db.session.commit()

        logger.info(f"Award created: {award.name}")
        return jsonify({'message': 'Award created successfully', 'award': serialize_award(award)}), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating award: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to create award'}), 500

@awards_bp.route('/<int:award_id>', methods=['PUT'])
@roles_required('admin', 'staff')
def update_award(award_id):
    award = db.session.get(Award, award_id)
    if not award:
        return jsonify({'error': 'Award not found or failed to update'}), 404

    is_valid, result = validate_request_data(
        AwardSchema, request.get_json(silent=True) or {}, partial=True
    )
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not result:
        return jsonify({'error': 'No update data provided'}), 400

    if 'name' in result and award_name_taken(result['name'], exclude_id=award_id):
        return jsonify({'error': 'Award with this name already exists'}), 409

    try:
        if 'name' in result:
            award.name = result['name']
        if 'iconUrl' in result:
            award.icon_url = result['iconUrl'] or current_app.config['DEFAULT_AWARD_ICON_URL']
        if 'description' in result:
            award.description = result['description']
        if 'category' in result:
            award.category = result['category']

        db.session.commit()
        return jsonify({'message': 'Award updated successfully', 'award': serialize_award(award)}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating award {award_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update award'}), 500

@awards_bp.route('/<int:award_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_award(award_id):
    """刪除獎項 (同時從所有專案移除)"""
    award = db.session.get(Award, award_id)
    if not award:
        return jsonify({'error': 'Award not found'}), 404

    try:
        for project in list(award.projects):
            project.awards.remove(award)

        db.session.delete(award)
        db.session.commit()

        logger.info(f"Award {award_id} deleted")
        return jsonify({'message': 'Award deleted successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting award {award_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete award'}), 500

# ============================================
# 專案頒獎 API
# ============================================

@awards_bp.route('/assign/project/<int:project_id>/award/<int:award_id>', methods=['POST'])
@roles_required('admin', 'staff')
def assign_award(project_id, award_id):
    project, award, error = get_project_and_award(project_id, award_id)
    if error:
        return error

    if award in project.awards:
        return jsonify({'error': 'Award already assigned to this project'}), 400

    try:
        project.awards.append(award)
        db.session.commit()

        logger.info(f"Award {award_id} assigned to project {project_id}")
        return jsonify({
            'message': 'Award assigned',
            'data': {'projectId': project.id, 'awards': [a.id for a in project.awards]}
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error assigning award {award_id} to project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@awards_bp.route('/remove/project/<int:project_id>/award/<int:award_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
def remove_award(project_id, award_id):
    project, award, error = get_project_and_award(project_id, award_id)
    if error:
        return error

    if award not in project.awards:
        return jsonify({'error': 'Award is not assigned to this project'}), 400

    try:
        project.awards.remove(award)
        db.session.commit()

        return jsonify({'message': 'Award removed from project'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing award {award_id} from project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
