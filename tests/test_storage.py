import re

import pytest

from conftest import BUCKET
from storage import (
    build_object_key, key_from_url, is_default_image, upload_file, delete_file_by_url,
    random_file_url, get_bucket_name, StorageError, AVATAR_FOLDER
)


def test_build_object_key_sanitizes_filename(app):
    key = build_object_key(AVATAR_FOLDER, 7, '../My Photo.png')

    assert re.fullmatch(r'assets/avatars/7/\d+_My_Photo\.png', key)


def test_key_from_url(app):
    assert key_from_url(f'https://{BUCKET}.s3.us-east-1.amazonaws.com/assets/a%20b.png') == 'assets/a b.png'
    assert key_from_url('https://elsewhere.example.com/assets/a.png') is None
    assert key_from_url('') is None


def test_upload_sets_encryption_and_content_type(app, s3):
    url = upload_file(b'data', 'assets/otherImages/1/x.png', 'image/png')

    assert url == f'https://{BUCKET}.s3.us-east-1.amazonaws.com/assets/otherImages/1/x.png'
    head = s3.head_object(Bucket=BUCKET, Key='assets/otherImages/1/x.png')
    assert head['ServerSideEncryption'] == 'AES256'
    assert head['ContentType'] == 'image/png'


def test_delete_skips_default_and_foreign_urls(app, s3):
    default_key = 'assets/projectImages/defaultImages/default1.png'
    s3.put_object(Bucket=BUCKET, Key=default_key, Body=b'png')
    default_url = f'https://{BUCKET}.s3.us-east-1.amazonaws.com/{default_key}'

    assert is_default_image(default_url)
    assert delete_file_by_url(default_url) is False
    assert delete_file_by_url('https://cdn.example.com/pic.png') is False
    assert s3.list_objects_v2(Bucket=BUCKET)['KeyCount'] == 1

    url = upload_file(b'data', 'assets/avatars/1/me.png')
    assert delete_file_by_url(url) is True
    assert s3.list_objects_v2(Bucket=BUCKET)['KeyCount'] == 1


def test_random_file_url(app, s3):
    assert random_file_url('assets/projectImages/defaultImages/') is None

    s3.put_object(Bucket=BUCKET, Key='assets/projectImages/defaultImages/', Body=b'')
    s3.put_object(Bucket=BUCKET, Key='assets/projectImages/defaultImages/a.png', Body=b'png')

    url = random_file_url('assets/projectImages/defaultImages/')
    assert url.endswith('/assets/projectImages/defaultImages/a.png')


def test_missing_bucket_configuration(app, monkeypatch):
    monkeypatch.setitem(app.config, 'AWS_S3_BUCKET_NAME', '')

    with pytest.raises(StorageError):
        get_bucket_name()


def test_upload_failure_raises_storage_error(app, s3):
    s3.delete_bucket(Bucket=BUCKET)

    with pytest.raises(StorageError):
        upload_file(b'data', 'assets/avatars/1/me.png')
