import datetime
import os
from contextlib import closing

import jwt
import pytest

os.environ['FLASK_ENV'] = 'testing'
os.environ.setdefault('SECRET_KEY', 'collegeconnect-test-secret-key-0123456789')

import server  # noqa: E402
from database_setup import connect, create_schema, seed_demo_data  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / 'collegeconnect_test.db')
    with closing(connect(path)) as conn:
        create_schema(conn)
    return path


@pytest.fixture
def conn(db_path):
    connection = connect(db_path)
    yield connection
    connection.close()


@pytest.fixture
def seeded(conn):
    seed_demo_data(conn)
    return conn


@pytest.fixture
def app(db_path):
    server.app.config['DATABASE_PATH'] = db_path
    server.app.config['TESTING'] = True
    server.app.config['AUTH_DEMO_MODE'] = True
    return server.app


@pytest.fixture
def client(app):
    return app.test_client()


def as_user(email):
    """Demo-mode headers: opaque bearer value + email header."""
    return {'Authorization': f'Bearer uid-{email}', 'X-User-Email': email}


def bearer(sub, email=None, role=None, expires_in=3600):
    payload = {
        'sub': sub,
        'exp': datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=expires_in),
    }
    if email:
        payload['email'] = email
    if role:
        payload['role'] = role
    token = jwt.encode(payload, server.app.config['SECRET_KEY'], algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


def user_id(conn, email):
    return conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()['id']


def subject_id(conn, code):
    return conn.execute("SELECT id FROM subjects WHERE code = ?", (code,)).fetchone()['id']


def student_ids(conn):
    return [row['id'] for row in conn.execute(
        "SELECT id FROM users WHERE role = 'student' ORDER BY email").fetchall()]
