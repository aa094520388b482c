from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from models import db, Project
from auth import get_current_user, get_current_role
from projects import check_team_ownership
from storage import (
    upload_file, delete_file_by_url, build_object_key, is_default_image,
    StorageError, AVATAR_FOLDER, PROJECT_IMAGE_FOLDER
)
import logging

files_bp = Blueprint('files', __name__)
logger = logging.getLogger(__name__)

# ============================================
# 輔助函數
# ============================================

def allowed_image(filename):
    if not filename or '.' not in filename:
        return False
    ext = filename.rsplit('.', 1)[1].lower()
    return ext in current_app.config['ALLOWED_IMAGE_EXTENSIONS']

def read_upload(file_storage, max_bytes):
    """
    讀取上傳的檔案並檢查格式和大小

    Returns:
        tuple: (data: bytes|None, error_response)
    """
    if not allowed_image(file_storage.filename):
        return None, (jsonify({'error': 'Only image files are allowed'}), 400)

    data = file_storage.read()
    if len(data) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        return None, (jsonify({'error': f'File too large. Maximum size is {limit_mb}MB'}), 413)

    if not data:
        return None, (jsonify({'error': 'Uploaded file is empty'}), 400)

    return data, None

def remove_old_file(url):
    """刪除舊檔案失敗不影響上傳"""
    try:
        delete_file_by_url(url)
    except StorageError as e:
        logger.warning(f"Could not delete old file {url}: {str(e)}")

# ============================================
# 頭像 API
# ============================================

@files_bp.route('/upload/avatar', methods=['POST'])
@jwt_required()
def upload_avatar():
    """上傳 / 更新自己的頭像 (欄位 image,最大 3MB)"""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    image = request.files.get('image')
    if not image:
        return jsonify({'error': 'No file uploaded'}), 400

    data, error = read_upload(image, current_app.config['AVATAR_MAX_BYTES'])
    if error:
        return error

    key = build_object_key(AVATAR_FOLDER, user.id, image.filename)
    try:
        url = upload_file(data, key, image.mimetype)
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    old_avatar = user.profile_picture

    try:
        user.profile_picture = url
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error saving avatar for user {user.id}: {str(e)}", exc_info=True)
        remove_old_file(url)
        return jsonify({'error': 'Internal server error'}), 500

    if old_avatar:
        remove_old_file(old_avatar)

    logger.info(f"Avatar uploaded for user {user.id}")
    return jsonify({'key': key, 'url': url}), 200

@files_bp.route('/avatar', methods=['DELETE'])
@jwt_required()
def remove_avatar():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    old_avatar = user.profile_picture

    try:
        user.profile_picture = ''
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing avatar for user {user.id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500

    if old_avatar:
        remove_old_file(old_avatar)

    return jsonify({'message': 'Your Avatar is removed successfully'}), 200

# ============================================
# 專案圖片 API
# ============================================

@files_bp.route('/upload/project-images', methods=['POST'])
@jwt_required()
def upload_project_images():
    """
    上傳專案圖片 (欄位 images,最多 5 張,每張最大 5MB)

    有帶 projectId 時要檢查隊伍權限,並把網址加到專案上
    """
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    images = request.files.getlist('images')
    if not images:
        return jsonify({'error': 'No files uploaded'}), 400

    max_count = current_app.config['PROJECT_IMAGE_MAX_COUNT']
    if len(images) > max_count:
        return jsonify({'error': f'You can upload at most {max_count} images'}), 400

    project = None
    project_id = request.form.get('projectId', type=int)
    if request.form.get('projectId') and project_id is None:
        return jsonify({'error': 'Invalid projectId'}), 400

    if project_id is not None:
        project = db.session.get(Project, project_id)
        if not project:
            return jsonify({'error': 'Project not found'}), 404

        allowed, error = check_team_ownership(project_id, user.id, get_current_role())
        if not allowed:
            return jsonify({'error': error}), 403

    payloads = []
    for image in images:
        data, error = read_upload(image, current_app.config['PROJECT_IMAGE_MAX_BYTES'])
        if error:
            return error
        payloads.append((image, data))

    owner_id = project_id if project_id is not None else user.id
    uploaded = []
    try:
        for image, data in payloads:
            key = build_object_key(PROJECT_IMAGE_FOLDER, owner_id, image.filename)
            uploaded.append({'key': key, 'url': upload_file(data, key, image.mimetype)})
    except StorageError as e:
        for item in uploaded:
            remove_old_file(item['url'])
        return jsonify({'error': str(e)}), 500

    if project:
        existing = [url for url in (project.image_urls or []) if not is_default_image(url)]
        combined = existing + [item['url'] for item in uploaded]
        if len(combined) > max_count:
            for item in uploaded:
                remove_old_file(item['url'])
            return jsonify({'error': f'A project can have at most {max_count} images'}), 400

        try:
            # 上傳真的圖片後就不需要預設圖片
            project.image_urls = combined
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error saving images for project {project_id}: {str(e)}", exc_info=True)
            return jsonify({'error': 'Internal server error'}), 500

    logger.info(f"{len(uploaded)} project images uploaded by user {user.id}")
    return jsonify({'files': uploaded}), 200
