import re
from urllib.parse import urlsplit, parse_qs

from conftest import auth_headers, make_team, make_user, fresh, PASSWORD
from extensions import mail
from models import db, User, Team, RegisteredStudent


def register(client, email, name='New User', password='secret123'):
    return client.post('/api/auth/register', json={
        'name': name, 'email': email, 'password': password
    })


def test_register_visitor(client):
    response = register(client, 'someone@example.com')

    assert response.status_code == 201
    body = response.get_json()
    assert body['user']['role'] == 'visitor'
    assert body['user']['email'] == 'someone@example.com'
    assert body['token']
    assert 'token=' in response.headers.get('Set-Cookie', '')


def test_register_registered_student_joins_team(client, app):
    team = make_team('Byte Me')
    db.session.add(RegisteredStudent(upi='jdoe001', name='Jane Doe', team_name='Byte Me'))
    db.session.commit()

    response = register(client, 'jdoe001@aucklanduni.ac.nz', name='Jane')

    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'capstoneStudent'

    user = User.query.filter_by(email='jdoe001@aucklanduni.ac.nz').first()
    assert user.team_id == team.id
    assert [m.id for m in fresh(Team, team.id).members] == [user.id]


def test_register_unlisted_university_email_is_visitor(client):
    response = register(client, 'zzzz999@aucklanduni.ac.nz')

    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'visitor'


def test_register_duplicate_email(client, visitor):
    response = register(client, visitor.email)

    assert response.status_code == 409
    assert response.get_json()['error'] == 'User already registered'


def test_register_validation(client):
    response = client.post('/api/auth/register', json={'name': '', 'email': 'bad', 'password': '123'})

    assert response.status_code == 400
    details = response.get_json()['details']
    assert {'name', 'email', 'password'} <= set(details)


def test_login_and_me(client, visitor):
    response = client.post('/api/auth/login', json={'email': visitor.email, 'password': PASSWORD})
    assert response.status_code == 200
    token = response.get_json()['token']

    me = client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.get_json()['user']['id'] == visitor.id
    assert fresh(User, visitor.id).last_login is not None


def test_login_uses_cookie(client, visitor):
    client.post('/api/auth/login', json={'email': visitor.email, 'password': PASSWORD})

    response = client.get('/api/auth/profile')

    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'visitor'


def test_login_invalid_credentials(client, visitor):
    response = client.post('/api/auth/login', json={'email': visitor.email, 'password': 'wrongpass'})
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Invalid credentials'

    response = client.post('/api/auth/login', json={'email': 'nobody@example.com', 'password': 'whatever'})
    assert response.status_code == 401


def test_logout_clears_cookie(client, visitor):
    client.post('/api/auth/login', json={'email': visitor.email, 'password': PASSWORD})

    response = client.post('/api/auth/logout')
    assert response.status_code == 200

    assert client.get('/api/auth/profile').status_code == 401


def test_check_email(client, visitor):
    assert client.get(f'/api/auth/check-email?email={visitor.email}').get_json() == {'exists': True}
    assert client.get('/api/auth/check-email?email=new@example.com').get_json() == {'exists': False}
    assert client.get('/api/auth/check-email').status_code == 400


def test_role_guards(client, admin, staff, visitor, student):
    assert client.get('/api/auth/admin-only').status_code == 401

    assert client.get('/api/auth/admin-only', headers=auth_headers(admin)).status_code == 200
    denied = client.get('/api/auth/admin-only', headers=auth_headers(staff))
    assert denied.status_code == 403
    assert denied.get_json()['error'] == 'Access denied. Insufficient permissions.'

    assert client.get('/api/auth/staff-or-admin', headers=auth_headers(staff)).status_code == 200
    assert client.get('/api/auth/staff-or-admin', headers=auth_headers(visitor)).status_code == 403

    assert client.get('/api/auth/students-only', headers=auth_headers(student)).status_code == 200
    assert client.get('/api/auth/students-only', headers=auth_headers(admin)).status_code == 403


def test_magic_link_registration(client, app):
    with mail.record_messages() as outbox:
        response = client.post('/api/auth/register/request-magic-link', json={
            'name': 'Magic', 'email': 'magic@example.com', 'password': 'secret123'
        })

    assert response.status_code == 200
    assert len(outbox) == 1
    assert outbox[0].recipients == ['magic@example.com']
    assert User.query.filter_by(email='magic@example.com').first() is None

    token = re.search(r'token=([\w-]+)', outbox[0].body).group(1)

    confirmed = client.get(f'/api/auth/register/confirm?token={token}')
    assert confirmed.status_code == 201
    assert confirmed.get_json()['user']['email'] == 'magic@example.com'

    # token 只能用一次
    again = client.get(f'/api/auth/register/confirm?token={token}')
    assert again.status_code == 400


def test_magic_link_rejects_unknown_token(client):
    response = client.get('/api/auth/register/confirm?token=not-a-real-token')
    assert response.status_code == 400


def test_password_reset_flow(client, visitor):
    with mail.record_messages() as outbox:
        response = client.post('/api/auth/password/request-reset', json={'email': visitor.email})

    assert response.status_code == 200
    assert len(outbox) == 1
    token = re.search(r'token=([\w-]+)', outbox[0].body).group(1)

    reset = client.post('/api/auth/password/reset', json={
        'email': visitor.email, 'token': token, 'password': 'brandnew1'
    })
    assert reset.status_code == 200

    login = client.post('/api/auth/login', json={'email': visitor.email, 'password': 'brandnew1'})
    assert login.status_code == 200

    reused = client.post('/api/auth/password/reset', json={
        'email': visitor.email, 'token': token, 'password': 'another1'
    })
    assert reused.status_code == 400


def test_password_reset_request_for_unknown_email(client):
    with mail.record_messages() as outbox:
        response = client.post('/api/auth/password/request-reset', json={'email': 'ghost@example.com'})

    assert response.status_code == 200
    assert outbox == []


def test_password_reset_link_keeps_email_intact(client, app):
    user = make_user('<b>x</b>', 'a+b@example.com')

    with mail.record_messages() as outbox:
        client.post('/api/auth/password/request-reset', json={'email': user.email})

    assert len(outbox) == 1
    link = re.search(r'https?://\S+', outbox[0].body).group(0)
    query = parse_qs(urlsplit(link).query)
    assert query['email'] == ['a+b@example.com']

    reset = client.post('/api/auth/password/reset', json={
        'email': query['email'][0], 'token': query['token'][0], 'password': 'brandnew1'
    })
    assert reset.status_code == 200


def test_reset_email_escapes_user_name(client, app):
    user = make_user('<b>x</b>', 'markup@example.com')

    with mail.record_messages() as outbox:
        client.post('/api/auth/password/request-reset', json={'email': user.email})

    html = outbox[0].html
    assert '<b>x</b>' not in html
    assert 'Hi &lt;b&gt;x&lt;/b&gt;,' in html
