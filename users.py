from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, verify_jwt_in_request, get_jwt
from marshmallow import Schema, fields, validate
from models import db, User, Project, Team, ROLES, USER_LINK_TYPES
from auth import get_current_user, roles_required, validate_request_data
from projects import serialize_project, get_liked_project_ids
from storage import delete_file_by_url, StorageError
from functools import wraps
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class UserLinkSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf(USER_LINK_TYPES))
    value = fields.Url(required=True)

class UpdateMeSchema(Schema):
    """使用者自己能改的欄位"""
    name = fields.Str(validate=validate.Length(min=1, max=30))
    links = fields.List(fields.Nested(UserLinkSchema))

class UpdateUserSchema(Schema):
    """admin / staff 更新使用者"""
    name = fields.Str(validate=validate.Length(min=1, max=30))
    email = fields.Email()
    profilePicture = fields.Str(validate=validate.Length(max=500))
    role = fields.Str(validate=validate.OneOf(ROLES))
    links = fields.List(fields.Nested(UserLinkSchema))
    project = fields.Int(allow_none=True)
    team = fields.Int(allow_none=True)

class FavoriteSchema(Schema):
    projectId = fields.Int(required=True, error_messages={'required': 'projectId is required'})

# ============================================
# 輔助函數
# ============================================

def serialize_user(user, include_email=True):
    data = {
        'id': user.id,
        'name': user.name,
        'role': user.role,
        'profilePicture': user.profile_picture or '',
        'links': user.links or [],
        'project': user.project_id,
        'team': user.team_id
    }
    if include_email:
        data['email'] = user.email
    return data

def _deny(message):
    return jsonify({'error': message}), 403

# ============================================
# 使用者權限 Decorators
# ============================================

def access_own_favorites_only(fn):
    """只能存取自己的收藏"""
    @wraps(fn)
    def wrapper(user_id, *args, **kwargs):
        verify_jwt_in_request()
        if get_jwt()['sub'] != str(user_id):
            return _deny('Access denied: You can only access your own favorites')
        return fn(user_id, *args, **kwargs)
    return wrapper

def delete_users_with_limited_role(fn):
    """
    刪除使用者的權限

    admin 不能刪自己或其他 admin; staff 只能刪 capstoneStudent 和 visitor
    """
    @wraps(fn)
    def wrapper(user_id, *args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()

        target = db.session.get(User, user_id)
        target_role = target.role if target else None

        if claims.get('role') == 'admin':
            if claims['sub'] == str(user_id) or target_role == 'admin':
                return _deny("Access denied: You can't delete this account")
            return fn(user_id, *args, **kwargs)

        if target_role in ('capstoneStudent', 'visitor'):
            return fn(user_id, *args, **kwargs)

        # 找不到使用者時交給 route 回 404
        if target is None:
            return fn(user_id, *args, **kwargs)

        return _deny("Access denied: You can't delete this account")
    return wrapper

def update_user_content(fn):
    """
    更新使用者的權限

    admin 全部可以; staff 不能設定 admin / staff 角色,也不能改 admin / staff 帳號
    """
    @wraps(fn)
    def wrapper(user_id, *args, **kwargs):
        verify_jwt_in_request()
        if get_jwt().get('role') == 'admin':
            return fn(user_id, *args, **kwargs)

        data = request.get_json(silent=True) or {}
        if data.get('role') in ('admin', 'staff'):
            return _deny('Access denied: You have no rights to set this role')

        target = db.session.get(User, user_id)
        if target and target.role in ('admin', 'staff'):
            return _deny("Access denied: You can't update this account")

        return fn(user_id, *args, **kwargs)
    return wrapper

# ============================================
# 使用者 API
# ============================================

@users_bp.route('', methods=['GET'])
@roles_required('admin', 'staff')
def get_all_users():
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify({'users': [serialize_user(u) for u in users]}), 200

@users_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify({'user': serialize_user(user)}), 200

@users_bp.route('/me', methods=['PATCH'])
@jwt_required()
def update_me():
    """更新自己的名字和連結"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    is_valid, result = validate_request_data(UpdateMeSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not result:
        return jsonify({'error': 'No update data provided'}), 400

    try:
        if 'name' in result:
            user.name = result['name'].strip()
        if 'links' in result:
            user.links = result['links']
        db.session.commit()

        return jsonify({'user': serialize_user(user)}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating profile of user {user.id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@users_bp.route('/<int:user_id>', methods=['GET'])
def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify({'user': serialize_user(user, include_email=False)}), 200

@users_bp.route('/<int:user_id>', methods=['PUT'])
@roles_required('admin', 'staff')
@update_user_content
def update_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    is_valid, result = validate_request_data(UpdateUserSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not result:
        return jsonify({'error': 'No update data provided'}), 400

    if 'email' in result and result['email'] != user.email:
        if User.query.filter_by(email=result['email']).first():
            return jsonify({'error': 'Email already in use'}), 409

    if result.get('project') is not None and not db.session.get(Project, result['project']):
        return jsonify({'error': 'Project not found'}), 404
    if result.get('team') is not None and not db.session.get(Team, result['team']):
        return jsonify({'error': 'Team not found'}), 404

    try:
        if 'name' in result:
            user.name = result['name'].strip()
        if 'email' in result:
            user.email = result['email']
        if 'profilePicture' in result:
            user.profile_picture = result['profilePicture']
        if 'role' in result:
            user.role = result['role']
        if 'links' in result:
            user.links = result['links']
        if 'project' in result:
            user.project_id = result['project']
        if 'team' in result:
            user.team_id = result['team']

        db.session.commit()

        logger.info(f"User {user_id} updated by {get_jwt()['sub']}")
        return jsonify({'user': serialize_user(user)}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating user {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@users_bp.route('/<int:user_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
@delete_users_with_limited_role
def delete_user(user_id):
    """
    刪除使用者

    按過讚的專案 likes_count 要扣回來,評論一起刪除
    """
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    avatar_url = user.profile_picture

    try:
        for project in user.liked_projects:
            project.likes_count = max(0, (project.likes_count or 0) - 1)

        db.session.delete(user)
        db.session.commit()

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting user {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    if avatar_url:
        try:
            delete_file_by_url(avatar_url)
        except StorageError as e:
            logger.warning(f"Could not delete avatar of user {user_id}: {str(e)}")

    logger.info(f"User {user_id} deleted by {get_jwt()['sub']}")
    return jsonify({'message': 'User deleted successfully'}), 200

# ============================================
# 收藏 API
# ============================================

@users_bp.route('/<int:user_id>/favorites', methods=['GET'])
@access_own_favorites_only
def get_favorites(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    liked_ids = get_liked_project_ids(user.id)
    return jsonify({'favorites': [serialize_project(p, liked_ids) for p in user.favorites]}), 200

@users_bp.route('/<int:user_id>/favorites', methods=['POST'])
@access_own_favorites_only
def add_favorite(user_id):
    """加入收藏 (重複加入不會出錯)"""
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    is_valid, result = validate_request_data(FavoriteSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'projectId is required', 'details': result}), 400

    project = db.session.get(Project, result['projectId'])
    if not project:
        return jsonify({'error': 'Project not found'}), 400

    try:
        if project not in user.favorites:
            user.favorites.append(project)
            db.session.commit()

        return jsonify({
            'message': 'Project added to favorites successfully',
            'favorites': [p.id for p in user.favorites]
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding favorite for user {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@users_bp.route('/<int:user_id>/favorites/<int:project_id>', methods=['DELETE'])
@access_own_favorites_only
def remove_favorite(user_id, project_id):
    user = db.session.get(User, user_id)
    project = db.session.get(Project, project_id)

    if not user or not project or project not in user.favorites:
        return jsonify({'error': "User not found or Project is not in user's favorites"}), 400

    try:
        user.favorites.remove(project)
        db.session.commit()

        return jsonify({'message': 'Project removed from favorites successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing favorite for user {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
