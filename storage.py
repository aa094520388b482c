import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app
from werkzeug.utils import secure_filename
from urllib.parse import urlparse, unquote
from datetime import datetime
import random
import logging

logger = logging.getLogger(__name__)

# 上傳資料夾 (S3 key 的第二層)
AVATAR_FOLDER = 'avatars'
PROJECT_IMAGE_FOLDER = 'projectImages'


class StorageError(Exception):
    """S3 操作失敗"""
    pass


# ============================================
# S3 Client
# ============================================

def get_s3_client():
    """
    取得 S3 client (每個 app 只建立一次)

    有設定 AWS_S3_ENDPOINT_URL 時走 MinIO 之類的相容服務
    """
    client = current_app.extensions.get('s3_client')
    if client is not None:
        return client

    config = current_app.config
    kwargs = {'region_name': config['AWS_REGION']}

    if config.get('AWS_ACCESS_KEY_ID') and config.get('AWS_SECRET_ACCESS_KEY'):
        kwargs['aws_access_key_id'] = config['AWS_ACCESS_KEY_ID']
        kwargs['aws_secret_access_key'] = config['AWS_SECRET_ACCESS_KEY']
        if config.get('AWS_SESSION_TOKEN'):
            kwargs['aws_session_token'] = config['AWS_SESSION_TOKEN']

    if config.get('AWS_S3_ENDPOINT_URL'):
        kwargs['endpoint_url'] = config['AWS_S3_ENDPOINT_URL']
        kwargs['config'] = BotoConfig(signature_version='s3v4', s3={'addressing_style': 'path'})

    client = boto3.client('s3', **kwargs)
    current_app.extensions['s3_client'] = client
    logger.info(f"S3 client initialized for bucket: {config['AWS_S3_BUCKET_NAME']}")
    return client


def get_bucket_name():
    bucket = current_app.config.get('AWS_S3_BUCKET_NAME')
    if not bucket:
        raise StorageError('S3 bucket is not configured')
    return bucket

# ============================================
# Key / URL 輔助函數
# ============================================

def build_object_key(folder, owner_id, filename):
    """assets/<folder>/<owner_id>/<timestamp>_<filename>"""
    timestamp = int(datetime.utcnow().timestamp() * 1000)
    safe_name = secure_filename(filename or '') or 'upload'
    return f"assets/{folder}/{owner_id}/{timestamp}_{safe_name}"


def build_public_url(key):
    bucket = get_bucket_name()
    region = current_app.config['AWS_REGION']
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def key_from_url(url):
    """從公開網址取出 object key,不是這個 bucket 的網址回傳 None"""
    if not url:
        return None

    parsed = urlparse(url)
    bucket = get_bucket_name()
    if not parsed.netloc.startswith(f"{bucket}.s3."):
        return None

    key = unquote(parsed.path.lstrip('/'))
    return key or None


def is_default_image(url):
    key = key_from_url(url)
    return bool(key) and key.startswith(current_app.config['DEFAULT_PROJECT_IMAGE_PREFIX'])

# ============================================
# 上傳 / 刪除 / 隨機取檔
# ============================================

def upload_file(data, key, content_type=None):
    """
    上傳檔案並回傳公開網址

    Raises:
        StorageError: 上傳失敗
    """
    params = {
        'Bucket': get_bucket_name(),
        'Key': key,
        'Body': data,
        'ServerSideEncryption': 'AES256'
    }
    if content_type:
        params['ContentType'] = content_type

    try:
        get_s3_client().put_object(**params)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"S3 upload failed for {key}: {str(e)}", exc_info=True)
        raise StorageError('Failed to upload file') from e

    logger.info(f"Uploaded file to S3: {key}")
    return build_public_url(key)


def delete_file_by_url(url):
    """
    用公開網址刪除 S3 檔案

    預設圖片不會被刪除

    Returns:
        bool: 是否真的刪除了檔案
    """
    key = key_from_url(url)
    if not key:
        logger.warning(f"Skip deleting non-bucket url: {url}")
        return False

    if key.startswith(current_app.config['DEFAULT_PROJECT_IMAGE_PREFIX']):
        logger.info(f"Skip deleting default image: {key}")
        return False

    try:
        get_s3_client().delete_object(Bucket=get_bucket_name(), Key=key)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"S3 delete failed for {key}: {str(e)}", exc_info=True)
        raise StorageError('Failed to delete file') from e

    logger.info(f"Deleted file from S3: {key}")
    return True


def random_file_url(prefix):
    """從 prefix 底下隨機挑一個檔案,沒有檔案回傳 None"""
    try:
        response = get_s3_client().list_objects_v2(Bucket=get_bucket_name(), Prefix=prefix)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"S3 list failed for {prefix}: {str(e)}", exc_info=True)
        raise StorageError('Failed to list files') from e

    # 排除資料夾本身
    keys = [obj['Key'] for obj in response.get('Contents', []) if not obj['Key'].endswith('/')]
    if not keys:
        return None

    return build_public_url(random.choice(keys))


def random_default_project_image():
    return random_file_url(current_app.config['DEFAULT_PROJECT_IMAGE_PREFIX'])
