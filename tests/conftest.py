import os

os.environ['FLASK_ENV'] = 'testing'
os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

import boto3
import pytest
from moto import mock_aws

from app import app as flask_app
from auth import generate_token
from extensions import bcrypt, limiter
from models import db, User, Team, Project, Semester, Category, Tag

BUCKET = 'test-showcase-bucket'
PASSWORD = 'password123'


@pytest.fixture(autouse=True)
def s3():
    """每個測試都有一個乾淨的 mock S3 bucket"""
    with mock_aws():
        client = boto3.client('s3', region_name='us-east-1')
        client.create_bucket(Bucket=BUCKET)
        flask_app.extensions.pop('s3_client', None)
        yield client
        flask_app.extensions.pop('s3_client', None)


@pytest.fixture
def app(s3):
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        limiter.reset()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ============================================
# 資料建立輔助
# ============================================

def make_user(name, email, role='visitor', team=None, password=PASSWORD):
    user = User(
        name=name,
        email=email,
        password_hash=bcrypt.generate_password_hash(password).decode('utf-8'),
        role=role,
        links=[]
    )
    if team:
        user.team = team
    db.session.add(user)
    db.session.commit()
    return user


def auth_headers(user):
    return {'Authorization': f'Bearer {generate_token(user)}'}


def make_semester(year=2025, term='S1'):
    semester = Semester(year=year, semester=term)
    db.session.add(semester)
    db.session.commit()
    return semester


def make_team(name='Team Rocket'):
    team = Team(name=name)
    db.session.add(team)
    db.session.commit()
    return team


def make_project(name, semester, team=None, image_urls=None):
    project = Project(name=name, semester=semester, team=team,
                      image_urls=image_urls or [], links=[], likes_count=0)
    db.session.add(project)
    if team:
        for member in team.members:
            member.project = project
    db.session.commit()
    return project


def fresh(model, obj_id):
    """拿掉 session 快取,重新從資料庫讀取"""
    db.session.expire_all()
    return db.session.get(model, obj_id)


@pytest.fixture
def admin(app):
    return make_user('Admin', 'admin@example.com', role='admin')


@pytest.fixture
def staff(app):
    return make_user('Staff', 'staff@example.com', role='staff')


@pytest.fixture
def visitor(app):
    return make_user('Visitor', 'visitor@example.com')


@pytest.fixture
def semester(app):
    return make_semester()


@pytest.fixture
def team(app):
    return make_team()


@pytest.fixture
def student(team):
    return make_user('Student', 'abcd123@aucklanduni.ac.nz', role='capstoneStudent', team=team)


@pytest.fixture
def project(semester, team, student):
    return make_project('Showcase', semester, team=team)


@pytest.fixture
def category(app):
    category = Category(name='Web')
    db.session.add(category)
    db.session.commit()
    return category


def tag_names():
    db.session.expire_all()
    return sorted(t.name for t in Tag.query.all())
