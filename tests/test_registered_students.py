import registered_students
from conftest import auth_headers, make_team
from models import db, RegisteredStudent, Team
from registered_students import bulk_upsert_students, clean_student_row
from seed import read_students_from_csv, create_missing_teams, main


def test_clean_student_row():
    assert clean_student_row({'upi': ' ABCD123 ', 'name': ' Ann ', 'teamName': 'T1'}) == {
        'upi': 'abcd123', 'name': 'Ann', 'team_name': 'T1'
    }
    assert clean_student_row({'upi': 'ab', 'name': 'Too Short'}) is None
    assert clean_student_row({'upi': 'abcd123', 'name': '  '}) is None
    assert clean_student_row('abcd123') is None


def test_bulk_upsert_students(app):
    ok, stats = bulk_upsert_students([
        {'upi': 'abcd123', 'name': 'Ann', 'teamName': 'T1'},
        {'upi': 'efgh456', 'name': 'Bob'},
        {'upi': 'not a upi', 'name': 'Broken'},
    ])
    assert ok
    assert stats == {'total': 2, 'inserted': 2, 'updated': 0, 'skipped': 1}

    ok, stats = bulk_upsert_students([{'upi': 'abcd123', 'name': 'Ann Lee', 'teamName': 'T2'}])
    assert stats['updated'] == 1
    assert RegisteredStudent.query.filter_by(upi='abcd123').first().team_name == 'T2'

    assert bulk_upsert_students([]) == (False, 'No students provided')
    assert bulk_upsert_students([{'upi': '!', 'name': 'x'}]) == (False, 'No valid students found')


def test_student_routes(client, staff, visitor):
    payload = {'students': [
        {'upi': 'zed0001', 'name': 'Zed'},
        {'upi': 'amy0002', 'name': 'Amy', 'teamName': 'Alpha'},
    ]}

    assert client.post('/api/registered-students', json=payload, headers=auth_headers(visitor)).status_code == 403

    added = client.post('/api/registered-students', json=payload, headers=auth_headers(staff))
    assert added.status_code == 200
    assert added.get_json()['stats']['inserted'] == 2

    page = client.get('/api/registered-students?page=1&limit=1', headers=auth_headers(staff)).get_json()
    assert [s['upi'] for s in page['students']] == ['amy0002']
    assert page['pagination'] == {'currentPage': 1, 'totalPages': 2, 'totalItems': 2, 'itemsPerPage': 1}

    bad = client.post('/api/registered-students', json={'students': 'zed'}, headers=auth_headers(staff))
    assert bad.status_code == 400

    assert client.delete('/api/registered-students/ZED0001', headers=auth_headers(staff)).status_code == 200
    assert client.delete('/api/registered-students/zed0001', headers=auth_headers(staff)).status_code == 404

    cleared = client.delete('/api/registered-students', headers=auth_headers(staff))
    assert cleared.get_json()['message'] == 'Removed 1 students'
    assert RegisteredStudent.query.count() == 0


def test_read_students_from_csv(tmp_path):
    path = tmp_path / 'groups.csv'
    path.write_text(
        'login_id,name,group_name\n'
        'abcd123,Ann,Alpha\n'
        'ABCD123,Ann Again,Beta\n'
        'efgh456,Bob,\n'
        ',Nobody,Alpha\n',
        encoding='utf-8'
    )

    assert read_students_from_csv(path) == [
        {'upi': 'abcd123', 'name': 'Ann', 'teamName': 'Alpha'},
        {'upi': 'efgh456', 'name': 'Bob', 'teamName': None},
    ]


def test_create_missing_teams(app):
    make_team('Alpha')
    students = [
        {'upi': 'abcd123', 'name': 'Ann', 'teamName': 'Alpha'},
        {'upi': 'efgh456', 'name': 'Bob', 'teamName': 'Beta'},
        {'upi': 'ijkl789', 'name': 'Cat', 'teamName': None},
    ]

    assert create_missing_teams(students) == 1
    assert sorted(t.name for t in Team.query.all()) == ['Alpha', 'Beta']


def test_seed_command(app, tmp_path):
    path = tmp_path / 'groups.csv'
    path.write_text('login_id,name,group_name\nabcd123,Ann,Gamma\n', encoding='utf-8')

    assert main([str(path), '--create-teams']) == 0

    db.session.expire_all()
    assert RegisteredStudent.query.filter_by(upi='abcd123').first().team_name == 'Gamma'
    assert Team.query.filter_by(name='Gamma').first() is not None


def test_student_delete_routes_report_failures(client, staff, monkeypatch):
    bulk_upsert_students([{'upi': 'abcd123', 'name': 'Ann'}])

    def broken(*args):
        raise RuntimeError('database is gone')

    monkeypatch.setattr(registered_students, 'remove_student', broken)
    monkeypatch.setattr(registered_students, 'clear_all_students', broken)

    one = client.delete('/api/registered-students/abcd123', headers=auth_headers(staff))
    assert one.status_code == 500
    assert one.get_json()['error'] == 'Failed to remove student'

    everything = client.delete('/api/registered-students', headers=auth_headers(staff))
    assert everything.status_code == 500

    monkeypatch.undo()
    assert RegisteredStudent.query.filter_by(upi='abcd123').count() == 1
