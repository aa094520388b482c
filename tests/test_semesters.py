from conftest import auth_headers, make_project, make_semester
from models import Semester
from semesters import (
    delete_semesters, get_semesters,
    SEMESTER_IN_USE, SEMESTER_NOT_FOUND, DELETE_FILTER_REQUIRED
)


def test_semesters_sorted_newest_year_first(app):
    make_semester(2024, 'S2')
    make_semester(2025, 'S2')
    make_semester(2025, 'S1')

    assert [(s.year, s.semester) for s in get_semesters()] == [(2025, 'S1'), (2025, 'S2'), (2024, 'S2')]
    assert [s.semester for s in get_semesters(year=2025, term='S2')] == ['S2']


def test_delete_semesters_service(app):
    first = make_semester(2023, 'S1')
    make_semester(2023, 'S2')
    in_use = make_semester(2024, 'S1')
    make_project('Busy', in_use)

    assert delete_semesters() == (False, DELETE_FILTER_REQUIRED)
    assert delete_semesters(semester_id=999) == (False, SEMESTER_NOT_FOUND)
    assert delete_semesters(year=2024) == (False, SEMESTER_IN_USE)

    assert delete_semesters(semester_id=first.id) == (True, 1)
    assert delete_semesters(year=2023) == (True, 1)
    assert Semester.query.count() == 1


def test_create_semester(client, staff, visitor):
    payload = {'year': 2026, 'semester': 'S1', 'startDate': '2026-03-01T00:00:00', 'endDate': '2026-06-30T00:00:00'}

    assert client.post('/api/semesters', json=payload, headers=auth_headers(visitor)).status_code == 403

    response = client.post('/api/semesters', json=payload, headers=auth_headers(staff))
    assert response.status_code == 201
    semester = response.get_json()['semester']
    assert semester['isActive'] is True
    assert semester['startDate'].startswith('2026-03-01')

    duplicate = client.post('/api/semesters', json=payload, headers=auth_headers(staff))
    assert duplicate.status_code == 409
    assert duplicate.get_json()['error'] == 'SEMESTER_EXISTS'


def test_create_semester_validation(client, staff):
    bad_term = client.post('/api/semesters', json={'year': 2026, 'semester': 'S3'}, headers=auth_headers(staff))
    assert bad_term.status_code == 400

    backwards = client.post('/api/semesters', json={
        'year': 2026, 'semester': 'S2', 'startDate': '2026-09-01T00:00:00', 'endDate': '2026-07-01T00:00:00'
    }, headers=auth_headers(staff))
    assert backwards.status_code == 400
    assert 'endDate' in backwards.get_json()['details']


def test_list_and_get_semesters(client, semester):
    listing = client.get('/api/semesters?year=2025').get_json()['semesters']
    assert [s['id'] for s in listing] == [semester.id]

    assert client.get('/api/semesters?year=1999').get_json()['semesters'] == []
    assert client.get('/api/semesters?semester=S1').get_json()['semesters'][0]['id'] == semester.id
    assert client.get('/api/semesters?semester=S9').status_code == 400
    assert client.get(f'/api/semesters/{semester.id}').status_code == 200
    assert client.get('/api/semesters/999').status_code == 404


def test_delete_semester_routes(client, admin, project):
    busy = client.delete(f'/api/semesters/{project.semester_id}', headers=auth_headers(admin))
    assert busy.status_code == 400
    assert busy.get_json()['error'] == SEMESTER_IN_USE

    make_semester(2020, 'S1')
    make_semester(2020, 'S2')

    no_filter = client.delete('/api/semesters', json={}, headers=auth_headers(admin))
    assert no_filter.status_code == 400

    response = client.delete('/api/semesters', json={'year': 2020}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.get_json()['deletedCount'] == 2

    assert client.delete('/api/semesters/999', headers=auth_headers(admin)).status_code == 404
