from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, verify_jwt_in_request, get_jwt
from marshmallow import Schema, fields, validate
from models import db, Comment, Project, User
from auth import get_current_user, validate_request_data
from extensions import limiter, user_or_ip_key
from functools import wraps
import logging

comments_bp = Blueprint('comments', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateCommentSchema(Schema):
    content = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=1000, error='Content must be 1-1000 characters'),
        error_messages={'required': 'Content is required'}
    )
    project = fields.Int(required=True, error_messages={'required': 'Project is required'})

class UpdateCommentSchema(Schema):
    content = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=1000, error='Content must be 1-1000 characters'),
        error_messages={'required': 'Content is required'}
    )

# ============================================
# 輔助函數
# ============================================

def serialize_comment(comment):
    return {
        'id': comment.id,
        'content': comment.content,
        'author': {
            'id': comment.author.id,
            'name': comment.author.name,
            'profilePicture': comment.author.profile_picture
        } if comment.author else None,
        'project': {
            'id': comment.project.id,
            'name': comment.project.name
        } if comment.project else None,
        'createdAt': comment.created_at.isoformat() if comment.created_at else None,
        'updatedAt': comment.updated_at.isoformat() if comment.updated_at else None
    }

def comment_rate_limit():
    return current_app.config['COMMENT_RATE_LIMIT']

def _comment_permission(allow_staff):
    """
    評論權限檢查

    作者本人可以通過,allow_staff 時 admin / staff 也可以
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(comment_id, *args, **kwargs):
            verify_jwt_in_request()
            claims = get_jwt()

            comment = db.session.get(Comment, comment_id)
            if not comment:
                return jsonify({'error': 'Comment not found'}), 404

            if allow_staff and claims.get('role') in ('admin', 'staff'):
                return fn(comment_id, *args, **kwargs)

            if str(comment.author_id) != claims['sub']:
                action = 'delete' if allow_staff else 'update'
                return jsonify({'error': f'Access denied: You can only {action} your own comment'}), 403

            return fn(comment_id, *args, **kwargs)
        return wrapper
    return decorator

# 只有作者可以修改
can_update_comment = _comment_permission(allow_staff=False)
# 作者或 admin / staff 可以刪除
can_delete_comment = _comment_permission(allow_staff=True)

# ============================================
# 公開 API
# ============================================

@comments_bp.route('', methods=['GET'])
def get_all_comments():
    comments = Comment.query.order_by(Comment.created_at.desc(), Comment.id.desc()).all()
    return jsonify({'comments': [serialize_comment(c) for c in comments]}), 200

@comments_bp.route('/project/<int:project_id>', methods=['GET'])
def get_comments_by_project(project_id):
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    comments = Comment.query.filter_by(project_id=project_id).order_by(
        Comment.created_at.desc(), Comment.id.desc()
    ).all()
    return jsonify({'comments': [serialize_comment(c) for c in comments]}), 200

@comments_bp.route('/<int:comment_id>', methods=['GET'])
def get_comment(comment_id):
    comment = db.session.get(Comment, comment_id)
    if not comment:
        return jsonify({'error': 'Comment not found'}), 404
    return jsonify({'comment': serialize_comment(comment)}), 200

@comments_bp.route('/user/<int:user_id>', methods=['GET'])
def get_comments_by_user(user_id):
    if not db.session.get(User, user_id):
        return jsonify({'error': 'User not found'}), 404

    comments = Comment.query.filter_by(author_id=user_id).order_by(
        Comment.created_at.desc(), Comment.id.desc()
    ).all()
    return jsonify({'comments': [serialize_comment(c) for c in comments]}), 200

# ============================================
# 需要登入的 API
# ============================================

@comments_bp.route('', methods=['POST'])
@jwt_required()
@limiter.limit(comment_rate_limit, key_func=user_or_ip_key,
               error_message='Too many comments, please try again later.')
def create_comment():
    """
    新增評論

    作者從 token 取得,每個使用者每分鐘最多 5 則
    """
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateCommentSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    content = result['content'].strip()
    if not content:
        return jsonify({'error': 'Content is required'}), 400

    project = db.session.get(Project, result['project'])
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    try:
        comment = Comment(content=content, author=user, project=project)
        db.session.add(comment)
        db.session.commit()

        logger.info(f"Comment {comment.id} created by user {user.id} on project {project.id}")

        return jsonify({
            'message': 'Comment created successfully',
            'comment': serialize_comment(comment)
        }), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating comment: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@comments_bp.route('/<int:comment_id>', methods=['PUT'])
@can_update_comment
def update_comment(comment_id):
    is_valid, result = validate_request_data(UpdateCommentSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Content is required', 'details': result}), 400

    content = result['content'].strip()
    if not content:
        return jsonify({'error': 'Content is required'}), 400

    comment = db.session.get(Comment, comment_id)

    try:
        comment.content = content
        db.session.commit()

        return jsonify({
            'message': 'Comment updated successfully',
            'comment': serialize_comment(comment)
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating comment {comment_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@comments_bp.route('/<int:comment_id>', methods=['DELETE'])
@can_delete_comment
def delete_comment(comment_id):
    comment = db.session.get(Comment, comment_id)

    try:
        db.session.delete(comment)
        db.session.commit()

        logger.info(f"Comment {comment_id} deleted by user {get_jwt()['sub']}")
        return jsonify({'message': 'Comment deleted successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting comment {comment_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
