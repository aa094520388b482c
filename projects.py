from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, verify_jwt_in_request, get_jwt
from sqlalchemy.orm import selectinload
from marshmallow import Schema, fields, validate
from models import (
    db, Project, Team, Semester, Category, User, Tag,
    project_likes, user_favorites, PROJECT_LINK_TYPES
)
from auth import (
    get_current_user, get_current_role, get_optional_user_id, roles_required, validate_request_data
)
from tags import (
    add_tag_to_project, remove_tag_from_project, unbind_all_tags,
    MAX_TAGS_REACHED, TAG_ALREADY_BOUND, TAG_NOT_FOUND, TAG_NOT_BOUND,
    PROJECT_NOT_FOUND, INVALID_TAG_NAME
)
from storage import random_default_project_image, delete_file_by_url, StorageError
from functools import wraps
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class ProjectLinkSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf(PROJECT_LINK_TYPES))
    value = fields.Url(required=True)

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
        error_messages={'required': 'Project name is required'}
    )
    description = fields.Str(load_default='')
    semester = fields.Int(required=True, error_messages={'required': 'Semester is required'})
    category = fields.Int(allow_none=True)
    # 只有 admin / staff 可以指定隊伍
    team = fields.Int(allow_none=True)
    links = fields.List(fields.Nested(ProjectLinkSchema), load_default=list)
    imageUrls = fields.List(fields.Url(), load_default=list)

class UpdateProjectSchema(Schema):
    """更新專案驗證 (至少要一個欄位)"""
    name = fields.Str(validate=validate.Length(min=1, max=100))
    description = fields.Str()
    semester = fields.Int()
    category = fields.Int(allow_none=True)
    links = fields.List(fields.Nested(ProjectLinkSchema))
    imageUrls = fields.List(fields.Url())

class TagNameSchema(Schema):
    tagName = fields.Str(required=True, validate=validate.Length(min=1, max=50))

# ============================================
# 輔助函數
# ============================================

def serialize_project(project, liked_ids=None):
    """
    專案轉 JSON

    liked_ids 是當前使用者按過讚的專案 id,沒有登入時為 None
    """
    data = {
        'id': project.id,
        'name': project.name,
        'description': project.description,
        'semester': {
            'id': project.semester.id,
            'year': project.semester.year,
            'semester': project.semester.semester
        } if project.semester else None,
        'category': {
            'id': project.category.id,
            'name': project.category.name
        } if project.category else None,
        'team': {
            'id': project.team.id,
            'name': project.team.name
        } if project.team else None,
        'links': project.links or [],
        'imageUrls': project.image_urls or [],
        'tags': [{'id': t.id, 'name': t.name} for t in project.tags],
        'awards': [
            {'id': a.id, 'name': a.name, 'iconUrl': a.icon_url, 'category': a.category}
            for a in project.awards
        ],
        'likesCount': project.likes_count,
        'createdAt': project.created_at.isoformat() if project.created_at else None,
        'updatedAt': project.updated_at.isoformat() if project.updated_at else None
    }
    if liked_ids is not None:
        data['userLiked'] = project.id in liked_ids
    return data

def get_liked_project_ids(user_id):
    if not user_id:
        return None
    rows = db.session.query(project_likes.c.project_id).filter(
        project_likes.c.user_id == user_id
    ).all()
    return {row[0] for row in rows}

def check_team_ownership(project_id, user_id, role):
    """
    檢查使用者能否修改專案

    Returns:
        tuple: (allowed: bool, error_message: str|None)
    """
    if role in ('admin', 'staff'):
        return True, None

    user = db.session.get(User, user_id)
    if not user or not user.team:
        return False, 'User is not assigned to a team'

    team_project = user.team.project
    if not team_project or team_project.id != project_id:
        return False, 'User does not have permission to modify this project'

    return True, None

def require_team_ownership(fn):
    """
    只有專案所屬隊伍的成員 (或 admin / staff) 可以通過

    route 參數必須叫 project_id
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        user_id = int(get_jwt()['sub'])
        role = get_current_role()

        try:
            allowed, error = check_team_ownership(kwargs.get('project_id'), user_id, role)
        except Exception as e:
            logger.error(f"Error verifying project ownership: {str(e)}", exc_info=True)
            return jsonify({'error': 'Internal server error while verifying project permissions'}), 500

        if not allowed:
            return jsonify({'error': error}), 403
        return fn(*args, **kwargs)
    return wrapper

def resolve_references(result):
    """
    把 semester / category id 換成物件

    Returns:
        tuple: (ok, error_message)
    """
    if 'semester' in result:
        semester = db.session.get(Semester, result['semester'])
        if not semester:
            return False, 'Semester not found'
        result['semester'] = semester

    if result.get('category') is not None:
        category = db.session.get(Category, result['category'])
        if not category:
            return False, 'Category not found'
        result['category'] = category

    return True, None

def pick_default_image():
    """隨機挑一張預設圖片,S3 出錯時不影響建立專案"""
    try:
        url = random_default_project_image()
    except StorageError as e:
        logger.warning(f"Could not assign default project image: {str(e)}")
        return []
    return [url] if url else []

# ============================================
# 專案 CRUD API
# ============================================

@projects_bp.route('', methods=['GET'])
def get_all_projects():
    """
    取得所有專案

    Query Parameters:
        semester: semester id
        category: category id
        tag: tag name
    """
    try:
        user_id = get_optional_user_id()

        query = Project.query.options(
            selectinload(Project.tags),
            selectinload(Project.awards)
        )

        semester_id = request.args.get('semester', type=int)
        if semester_id:
            query = query.filter(Project.semester_id == semester_id)

        category_id = request.args.get('category', type=int)
        if category_id:
            query = query.filter(Project.category_id == category_id)

        tag_name = request.args.get('tag')
        if tag_name:
            query = query.filter(Project.tags.any(Tag.name == tag_name))

        projects = query.order_by(Project.created_at.desc(), Project.id.desc()).all()
        liked_ids = get_liked_project_ids(user_id)

        return jsonify({'projects': [serialize_project(p, liked_ids) for p in projects]}), 200

    except Exception as e:
        logger.error(f"Error fetching projects: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

@projects_bp.route('/<int:project_id>', methods=['GET'])
def get_project(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    liked_ids = get_liked_project_ids(get_optional_user_id())
    return jsonify({'project': serialize_project(project, liked_ids)}), 200

@projects_bp.route('', methods=['POST'])
@roles_required('admin', 'staff', 'capstoneStudent')
def create_project():
    """
    建立專案

    學生只能幫自己的隊伍建立,admin / staff 可以用 team 指定隊伍
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    ok, error = resolve_references(result)
    if not ok:
        return jsonify({'error': error}), 404

    if current_user.role == 'capstoneStudent':
        team = current_user.team
        if not team:
            return jsonify({'error': 'User is not assigned to a team'}), 403
        if result.get('team') is not None and result['team'] != team.id:
            return jsonify({'error': 'Students can only create projects for their own team'}), 403
    elif result.get('team') is not None:
        team = db.session.get(Team, result['team'])
        if not team:
            return jsonify({'error': 'Team not found'}), 404
    else:
        team = None

    if team and team.project:
        return jsonify({'error': 'Team already has a project'}), 400

    try:
        project = Project(
            name=result['name'].strip(),
            description=result['description'],
            semester=result['semester'],
            category=result.get('category'),
            links=result['links'],
            image_urls=result['imageUrls'] or pick_default_image(),
            likes_count=0
        )
        db.session.add(project)

        if team:
            project.team = team
            for member in team.members:
                member.project = project

        db.session.commit()

        logger.info(f"Project created: {project.id} by user {current_user.id}")

        return jsonify({
            'message': 'Project created successfully',
            'project': serialize_project(project)
        }), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating project: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to create project'}), 500

@projects_bp.route('/<int:project_id>', methods=['PUT'])
@roles_required('admin', 'staff', 'capstoneStudent')
@require_team_ownership
def update_project(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not result:
        return jsonify({'error': 'At least one field must be provided'}), 400

    ok, error = resolve_references(result)
    if not ok:
        return jsonify({'error': error}), 404

    try:
        if 'name' in result:
            project.name = result['name'].strip()
        if 'description' in result:
            project.description = result['description']
        if 'semester' in result:
            project.semester = result['semester']
        if 'category' in result:
            project.category = result['category']
        if 'links' in result:
            project.links = result['links']
        if 'imageUrls' in result:
            project.image_urls = result['imageUrls']

        db.session.commit()

        logger.info(f"Project {project_id} updated")
        return jsonify({'project': serialize_project(project)}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update project'}), 500

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_project(project_id):
    """
    刪除專案

    1. 解除所有標籤 (mentions 歸零的標籤會刪除)
    2. 清除隊伍和成員的關聯、按讚和收藏
    3. 刪除 S3 上的非預設圖片
    """
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    image_urls = list(project.image_urls or [])

    try:
        unbind_all_tags(project)

        User.query.filter_by(project_id=project_id).update({'project_id': None})
        db.session.execute(project_likes.delete().where(project_likes.c.project_id == project_id))
        db.session.execute(user_favorites.delete().where(user_favorites.c.project_id == project_id))

        db.session.delete(project)
        db.session.commit()

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete project'}), 500

    for url in image_urls:
        try:
            delete_file_by_url(url)
        except StorageError as e:
            logger.warning(f"Could not delete image {url} of project {project_id}: {str(e)}")

    logger.info(f"Project {project_id} deleted")
    return jsonify({'message': 'Project deleted successfully'}), 200

# ============================================
# 專案標籤 API
# ============================================

@projects_bp.route('/<int:project_id>/tags', methods=['POST'])
@roles_required('admin', 'staff', 'capstoneStudent')
@require_team_ownership
def set_tag_to_project(project_id):
    is_valid, result = validate_request_data(TagNameSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'tagName is required', 'details': result}), 400

    try:
        ok, data = add_tag_to_project(result['tagName'], project_id)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding tag to project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    if not ok:
        if data == MAX_TAGS_REACHED:
            return jsonify({'error': 'Only can add at most 5 tags to the project'}), 400
        if data == TAG_ALREADY_BOUND:
            return jsonify({'error': 'Tag is already bound to this project'}), 400
        if data == INVALID_TAG_NAME:
            return jsonify({'error': 'Tag name must be 1-50 characters'}), 400
        if data == PROJECT_NOT_FOUND:
            return jsonify({'error': 'Project not found'}), 404
        return jsonify({'error': data}), 500

    return jsonify({'data': data}), 200

@projects_bp.route('/<int:project_id>/tags', methods=['DELETE'])
@roles_required('admin', 'staff', 'capstoneStudent')
@require_team_ownership
def delete_tag_from_project(project_id):
    is_valid, result = validate_request_data(TagNameSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'tagName is required', 'details': result}), 400

    try:
        ok, data = remove_tag_from_project(result['tagName'], project_id)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing tag from project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    if not ok:
        if data in (TAG_NOT_FOUND, PROJECT_NOT_FOUND):
            return jsonify({'error': data}), 404
        if data == TAG_NOT_BOUND:
            return jsonify({'error': data}), 400
        return jsonify({'error': 'Unknown error'}), 500

    return jsonify({'message': 'Tag is removed from the project successfully'}), 200

# ============================================
# 按讚 API
# ============================================

@projects_bp.route('/<int:project_id>/like', methods=['POST'])
@jwt_required()
def toggle_like(project_id):
    """按讚 / 取消讚 (likes_count 不會小於 0)"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    try:
        if project in user.liked_projects:
            user.liked_projects.remove(project)
            project.likes_count = max(0, (project.likes_count or 0) - 1)
            liked = False
        else:
            user.liked_projects.append(project)
            project.likes_count = (project.likes_count or 0) + 1
            liked = True

        db.session.commit()

        return jsonify({'liked': liked, 'likesCount': project.likes_count}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error toggling like on project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update like'}), 500
