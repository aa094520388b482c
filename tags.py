from flask import Blueprint, request, jsonify
from models import db, Tag, Project, MAX_TAGS_PER_PROJECT
from auth import roles_required
import logging

tags_bp = Blueprint('tags', __name__)
logger = logging.getLogger(__name__)

# 錯誤代碼 (route 用它決定 status code)
TAG_NOT_FOUND = 'TAG_NOT_FOUND'
PROJECT_NOT_FOUND = 'PROJECT_NOT_FOUND'
TAG_ALREADY_BOUND = 'TAG_ALREADY_BOUND'
TAG_NOT_BOUND = 'TAG_NOT_BOUND'
MAX_TAGS_REACHED = 'MAX_TAGS_REACHED'
TAG_EXISTS = 'TAG_EXISTS'
INVALID_TAG_NAME = 'INVALID_TAG_NAME'


def serialize_tag(tag):
    return {
        'name': tag.name,
        'projects': [p.id for p in tag.projects],
        'mentions': tag.mentions
    }

def normalize_tag_name(tag_name):
    if not isinstance(tag_name, str):
        return None
    name = tag_name.strip()
    if not name or len(name) > 50:
        return None
    return name

# ============================================
# Tag Service
#
# 每個函數回傳 (ok, data_or_error_code)
# ============================================

def add_new_tag(tag_name):
    """建立新標籤 (mentions 從 0 開始)"""
    name = normalize_tag_name(tag_name)
    if not name:
        return False, INVALID_TAG_NAME

    if Tag.query.filter_by(name=name).first():
        return False, TAG_EXISTS

    tag = Tag(name=name, mentions=0)
    db.session.add(tag)
    db.session.commit()
    return True, serialize_tag(tag)

def find_all_tags():
    tags = Tag.query.order_by(Tag.name).all()
    return True, [serialize_tag(tag) for tag in tags]

def find_tag_by_name(tag_name):
    tag = Tag.query.filter_by(name=tag_name).first()
    if not tag:
        return False, TAG_NOT_FOUND

    return True, {
        'name': tag.name,
        'mentions': tag.mentions,
        'projects': [
            {'id': p.id, 'name': p.name, 'imageUrl': (p.image_urls or [None])[0]}
            for p in tag.projects
        ]
    }

def remove_tag(tag_name):
    """
    刪除標籤

    先從所有綁定的專案解除,再刪除標籤本身
    """
    tag = Tag.query.filter_by(name=tag_name).first()
    if not tag:
        return False, TAG_NOT_FOUND

    data = serialize_tag(tag)
    for project in list(tag.projects):
        project.tags.remove(tag)

    db.session.delete(tag)
    db.session.commit()

    logger.info(f"Tag deleted: {tag_name} (unbound from {len(data['projects'])} projects)")
    return True, data

def _check_bindable(tag, project):
    if tag is not None and tag in project.tags:
        return TAG_ALREADY_BOUND
    if len(project.tags) >= MAX_TAGS_PER_PROJECT:
        return MAX_TAGS_REACHED
    return None

def bind_tag_to_project(tag_name, project_id):
    """把已存在的標籤綁定到專案,mentions + 1"""
    tag = Tag.query.filter_by(name=tag_name).first()
    if not tag:
        return False, TAG_NOT_FOUND

    project = db.session.get(Project, project_id)
    if not project:
        return False, PROJECT_NOT_FOUND

    error = _check_bindable(tag, project)
    if error:
        return False, error

    project.tags.append(tag)
    tag.mentions += 1
    db.session.commit()

    return True, serialize_tag(tag)

def remove_tag_from_project(tag_name, project_id):
    """
    解除標籤和專案的綁定

    mentions 歸零時刪除標籤,此時 data 回傳 None
    """
    tag = Tag.query.filter_by(name=tag_name).first()
    if not tag:
        return False, TAG_NOT_FOUND

    project = db.session.get(Project, project_id)
    if not project:
        return False, PROJECT_NOT_FOUND

    if tag not in project.tags:
        return False, TAG_NOT_BOUND

    project.tags.remove(tag)
    tag.mentions -= 1

    if tag.mentions <= 0:
        db.session.delete(tag)
        db.session.commit()
        logger.info(f"Tag {tag_name} has no mentions left and was deleted")
        return True, None

    db.session.commit()
    return True, serialize_tag(tag)

def add_tag_to_project(tag_name, project_id):
    """
    加標籤到專案,標籤不存在時先建立

    專案的檢查在建立標籤之前做,避免留下 mentions = 0 的標籤
    """
    name = normalize_tag_name(tag_name)
    if not name:
        return False, INVALID_TAG_NAME

    project = db.session.get(Project, project_id)
    if not project:
        return False, PROJECT_NOT_FOUND

    tag = Tag.query.filter_by(name=name).first()
    error = _check_bindable(tag, project)
    if error:
        return False, error

    if tag is None:
        ok, result = add_new_tag(name)
        if not ok:
            return False, result

    return bind_tag_to_project(name, project_id)

def unbind_all_tags(project):
    """
    刪除專案前解除所有標籤 (不 commit,由呼叫者決定)

    mentions 歸零的標籤會一起刪除
    """
    for tag in list(project.tags):
        project.tags.remove(tag)
        tag.mentions -= 1
        if tag.mentions <= 0:
            db.session.delete(tag)

# ============================================
# Tag Routes
# ============================================

@tags_bp.route('', methods=['GET'])
def get_all_tags():
    try:
        _, tags = find_all_tags()
        return jsonify({'tags': tags}), 200
    except Exception as e:
        logger.error(f"Error fetching tags: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch tags'}), 500

@tags_bp.route('/<tag_name>', methods=['GET'])
def get_tag_by_name(tag_name):
    ok, result = find_tag_by_name(tag_name)
    if not ok:
        return jsonify({'error': 'Tag not found'}), 404
    return jsonify({'tag': result}), 200

@tags_bp.route('', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_tag_by_name():
    data = request.get_json(silent=True) or {}
    tag_name = data.get('tagName')
    if not tag_name:
        return jsonify({'error': 'tagName is required'}), 400

    try:
        ok, result = remove_tag(tag_name)
        if not ok:
            return jsonify({'error': 'Tag not found'}), 404
        return jsonify({'message': 'Tag deleted successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting tag {tag_name}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
