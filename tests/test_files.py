import io

from conftest import BUCKET, auth_headers, make_team, make_user, fresh
from models import db, User, Project

DEFAULT_KEY = 'assets/projectImages/defaultImages/default1.png'
DEFAULT_URL = f'https://{BUCKET}.s3.us-east-1.amazonaws.com/{DEFAULT_KEY}'


def image(name='photo.png', content=b'\x89PNG fake'):
    return (io.BytesIO(content), name, 'image/png')


def object_keys(s3):
    return sorted(obj['Key'] for obj in s3.list_objects_v2(Bucket=BUCKET).get('Contents', []))


def upload_avatar(client, user, file):
    return client.post('/api/files/upload/avatar', data={'image': file},
                       content_type='multipart/form-data', headers=auth_headers(user))


# ============================================
# 頭像
# ============================================

def test_upload_avatar(client, s3, visitor):
    response = upload_avatar(client, visitor, image())

    assert response.status_code == 200
    body = response.get_json()
    assert body['key'].startswith(f'assets/avatars/{visitor.id}/')
    assert body['url'].endswith(body['key'])
    assert fresh(User, visitor.id).profile_picture == body['url']

    head = s3.head_object(Bucket=BUCKET, Key=body['key'])
    assert head['ServerSideEncryption'] == 'AES256'


def test_new_avatar_replaces_old_file(client, s3, visitor):
    first = upload_avatar(client, visitor, image('first.png')).get_json()
    second = upload_avatar(client, visitor, image('second.png')).get_json()

    assert object_keys(s3) == [second['key']]
    assert first['key'] != second['key']


def test_avatar_validation(client, app, visitor, monkeypatch):
    assert upload_avatar(client, visitor, image('notes.txt')).status_code == 400
    assert upload_avatar(client, visitor, image(content=b'')).status_code == 400

    no_file = client.post('/api/files/upload/avatar', data={}, content_type='multipart/form-data',
                          headers=auth_headers(visitor))
    assert no_file.status_code == 400

    monkeypatch.setitem(app.config, 'AVATAR_MAX_BYTES', 4)
    too_large = upload_avatar(client, visitor, image(content=b'12345'))
    assert too_large.status_code == 413


def test_remove_avatar(client, s3, visitor):
    upload_avatar(client, visitor, image())

    response = client.delete('/api/files/avatar', headers=auth_headers(visitor))

    assert response.status_code == 200
    assert fresh(User, visitor.id).profile_picture == ''
    assert object_keys(s3) == []


# ============================================
# 專案圖片
# ============================================

def upload_project_images(client, user, files, project_id=None):
    data = {'images': files}
    if project_id is not None:
        data['projectId'] = str(project_id)
    return client.post('/api/files/upload/project-images', data=data,
                       content_type='multipart/form-data', headers=auth_headers(user))


def test_project_images_replace_default(client, s3, project, student):
    s3.put_object(Bucket=BUCKET, Key=DEFAULT_KEY, Body=b'png')
    project.image_urls = [DEFAULT_URL]
    db.session.commit()
    project_id = project.id

    response = upload_project_images(client, student, [image('a.png'), image('b.png')], project_id)

    assert response.status_code == 200
    files = response.get_json()['files']
    assert len(files) == 2
    assert all(f['key'].startswith(f'assets/projectImages/{project_id}/') for f in files)
    assert fresh(Project, project_id).image_urls == [f['url'] for f in files]
    assert DEFAULT_KEY in object_keys(s3)


def test_project_image_limits(client, s3, project, student):
    too_many = upload_project_images(client, student, [image(f'{i}.png') for i in range(6)], project.id)
    assert too_many.status_code == 400

    for i in range(4):
        upload_project_images(client, student, [image(f'{i}.png')], project.id)

    over = upload_project_images(client, student, [image('x.png'), image('y.png')], project.id)
    assert over.status_code == 400
    assert len(fresh(Project, project.id).image_urls) == 4
    assert len(object_keys(s3)) == 4


def test_project_images_require_ownership(client, project):
    outsider = make_user('Out', 'out003@aucklanduni.ac.nz', role='capstoneStudent', team=make_team('Other'))

    response = upload_project_images(client, outsider, [image()], project.id)
    assert response.status_code == 403

    missing = upload_project_images(client, outsider, [image()], 999)
    assert missing.status_code == 404


def test_project_images_without_project(client, s3, staff):
    response = upload_project_images(client, staff, [image()])

    assert response.status_code == 200
    assert response.get_json()['files'][0]['key'].startswith(f'assets/projectImages/{staff.id}/')
    assert len(object_keys(s3)) == 1
