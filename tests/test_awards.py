from conftest import auth_headers, fresh
from models import Project


def create_award(client, user, **overrides):
    payload = {'name': 'Best UI', 'description': 'Cleanest interface', 'category': 'Design'}
    payload.update(overrides)
    return client.post('/api/awards', json=payload, headers=auth_headers(user))


def test_create_award_uses_default_icon(client, app, staff):
    response = create_award(client, staff)

    assert response.status_code == 201
    award = response.get_json()['award']
    assert award['iconUrl'] == app.config['DEFAULT_AWARD_ICON_URL']
    assert award['category'] == 'Design'


def test_create_award_rules(client, staff, visitor):
    assert create_award(client, visitor).status_code == 403
    assert create_award(client, staff, category='Fastest').status_code == 400
    assert create_award(client, staff, description='').status_code == 400

    create_award(client, staff)
    duplicate = create_award(client, staff)
    assert duplicate.status_code == 409
    assert duplicate.get_json()['error'] == 'Award with this name already exists'


def test_list_and_filter_awards(client, staff):
    create_award(client, staff)
    create_award(client, staff, name='Most Useful', category='Social Impact')

    assert len(client.get('/api/awards').get_json()['awards']) == 2

    design = client.get('/api/awards?category=Design').get_json()['awards']
    assert [a['name'] for a in design] == ['Best UI']

    assert client.get('/api/awards?category=Nope').status_code == 400


def test_update_award(client, staff):
    award_id = create_award(client, staff).get_json()['award']['id']
    create_award(client, staff, name='Other')

    response = client.put(f'/api/awards/{award_id}', json={'description': 'Updated'},
                          headers=auth_headers(staff))
    assert response.status_code == 200
    assert response.get_json()['award']['description'] == 'Updated'
    assert response.get_json()['award']['name'] == 'Best UI'

    taken = client.put(f'/api/awards/{award_id}', json={'name': 'Other'}, headers=auth_headers(staff))
    assert taken.status_code == 409

    same_name = client.put(f'/api/awards/{award_id}', json={'name': 'Best UI'}, headers=auth_headers(staff))
    assert same_name.status_code == 200

    assert client.put(f'/api/awards/{award_id}', json={}, headers=auth_headers(staff)).status_code == 400
    assert client.put('/api/awards/999', json={'name': 'x'}, headers=auth_headers(staff)).status_code == 404


def test_assign_and_remove_award(client, staff, project):
    award_id = create_award(client, staff).get_json()['award']['id']
    assign_url = f'/api/awards/assign/project/{project.id}/award/{award_id}'
    remove_url = f'/api/awards/remove/project/{project.id}/award/{award_id}'

    response = client.post(assign_url, headers=auth_headers(staff))
    assert response.status_code == 200
    assert response.get_json()['data']['awards'] == [award_id]

    again = client.post(assign_url, headers=auth_headers(staff))
    assert again.status_code == 400

    detail = client.get(f'/api/projects/{project.id}').get_json()['project']
    assert [a['id'] for a in detail['awards']] == [award_id]

    assert client.delete(remove_url, headers=auth_headers(staff)).status_code == 200
    assert client.delete(remove_url, headers=auth_headers(staff)).status_code == 400

    assert client.post(f'/api/awards/assign/project/999/award/{award_id}',
                       headers=auth_headers(staff)).status_code == 404
    assert client.post(f'/api/awards/assign/project/{project.id}/award/999',
                       headers=auth_headers(staff)).status_code == 404


def test_delete_award_detaches_projects(client, staff, project):
    award_id = create_award(client, staff).get_json()['award']['id']
    client.post(f'/api/awards/assign/project/{project.id}/award/{award_id}', headers=auth_headers(staff))

    response = client.delete(f'/api/awards/{award_id}', headers=auth_headers(staff))

    assert response.status_code == 200
    assert fresh(Project, project.id).awards == []
    assert client.get(f'/api/awards/{award_id}').status_code == 404
