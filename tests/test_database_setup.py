import sqlite3

import pytest

import attendance_store
from conftest import student_ids, subject_id
from database_setup import create_schema, seed_demo_data


def _count(conn, table):
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_seed_is_repeatable(conn):
    counts = seed_demo_data(conn)
    assert counts == {'students': 10, 'subjects': 5, 'staff': 5}

    seed_demo_data(conn)
    assert _count(conn, 'users') == 16
    assert _count(conn, 'enrollments') == 50
    assert _count(conn, 'staff_subjects') == 5


def test_reset_drops_everything(seeded):
    create_schema(seeded, reset=True)
    assert _count(seeded, 'users') == 0
    assert _count(seeded, 'subjects') == 0


def test_one_session_per_slot(seeded):
    sid = subject_id(seeded, '23CSP101')
    with seeded:
        attendance_store.create_session(seeded, sid, '2025-04-07', 'I')
    with pytest.raises(sqlite3.IntegrityError):
        with seeded:
            attendance_store.create_session(seeded, sid, '2025-04-07', 'I')


def test_one_entry_per_student_and_session(seeded):
    sid = subject_id(seeded, '23CSP101')
    student = student_ids(seeded)[0]
    with seeded:
        session_id = attendance_store.create_session(seeded, sid, '2025-04-07', 'I')
        attendance_store.insert_entries(seeded, session_id, [(student, True)])
    with pytest.raises(sqlite3.IntegrityError):
        with seeded:
            attendance_store.insert_entries(seeded, session_id, [(student, False)])


def test_period_must_be_known(seeded):
    with pytest.raises(sqlite3.IntegrityError):
        with seeded:
            attendance_store.create_session(seeded, subject_id(seeded, '23CSP101'), '2025-04-07', 'IX')


def test_deleting_a_session_cascades_to_entries(seeded):
    sid = subject_id(seeded, '23CSP101')
    with seeded:
        session_id = attendance_store.create_session(seeded, sid, '2025-04-07', 'I')
        attendance_store.insert_entries(seeded, session_id, [(s, True) for s in student_ids(seeded)])
        attendance_store.delete_sessions_between(seeded, '2025-04-07', '2025-04-07')
    assert _count(seeded, 'attendance_entries') == 0


def test_lookups_past_the_bound_variable_limit(seeded):
    sid = subject_id(seeded, '23CSP101')
    with seeded:
        session_id = attendance_store.create_session(seeded, sid, '2025-04-07', 'I')
        attendance_store.insert_entries(seeded, session_id, [(s, True) for s in student_ids(seeded)])

    padding = [f'missing-{n}' for n in range(2000)]

    subjects = attendance_store.get_subjects(seeded, padding + [sid])
    assert [s['code'] for s in subjects] == ['23CSP101']

    sessions = attendance_store.sessions_for_subjects(seeded, padding + [sid], '2025-04-01', '2025-04-30')
    assert [s['id'] for s in sessions] == [session_id]
    assert attendance_store.sessions_for_subjects(seeded, padding + [sid], '2025-05-01') == []

    assert attendance_store.entry_counts_by_session(seeded, padding + [session_id]) == {session_id: 10}
    assert attendance_store.enrollment_counts(seeded, padding + [sid]) == {sid: 10}
    assert len(attendance_store.get_users(seeded, padding + student_ids(seeded))) == 10
