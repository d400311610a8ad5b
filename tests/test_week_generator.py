import datetime
import random

import pytest

import attendance_store
from week_generator import generate_week, regular_subjects, week_days, week_monday

WEDNESDAY = datetime.date(2025, 4, 9)


def _count(conn, table):
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_week_monday():
    assert week_monday(WEDNESDAY) == datetime.date(2025, 4, 7)
    assert week_monday(datetime.date(2025, 4, 7)) == datetime.date(2025, 4, 7)
    assert week_monday(datetime.date(2025, 4, 12)) == datetime.date(2025, 4, 7)
    # Sunday belongs to the week that started six days earlier
    assert week_monday(datetime.date(2025, 4, 13)) == datetime.date(2025, 4, 7)


def test_week_days_are_monday_to_saturday():
    assert week_days(WEDNESDAY) == [
        '2025-04-07', '2025-04-08', '2025-04-09', '2025-04-10', '2025-04-11', '2025-04-12']


def test_generate_week_counts(seeded):
    result = generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))

    assert result['days'][0] == '2025-04-07'
    assert result['sessions'] == 6 * 8
    assert result['entries'] == 6 * 8 * 10
    assert _count(seeded, 'attendance_sessions') == 48
    assert _count(seeded, 'attendance_entries') == 480


def test_every_day_has_all_eight_periods(seeded):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))

    for date in week_days(WEDNESDAY):
        periods = sorted(row['period'] for row in seeded.execute(
            "SELECT period FROM attendance_sessions WHERE date = ?", (date,)).fetchall())
        assert periods == sorted(['I', 'II', 'III', 'IV', 'V', 'VI', 'VII', 'VIII'])


def test_special_periods_are_always_present(seeded):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1), absence_probability=1.0)

    rows = seeded.execute("""
        SELECT s.period, sub.code, e.present
        FROM attendance_entries e
        JOIN attendance_sessions s ON s.id = e.session_id
        JOIN subjects sub ON sub.id = s.subject_id
        WHERE s.period IN ('VI', 'VII', 'VIII')
    """).fetchall()
    assert len(rows) == 6 * 3 * 10
    assert all(row['present'] == 1 for row in rows)
    expected = {'VI': 'FREE001', 'VII': 'LIB001', 'VIII': 'ONL001'}
    assert all(expected[row['period']] == row['code'] for row in rows)

    regular = seeded.execute("""
        SELECT COUNT(*) FROM attendance_entries e
        JOIN attendance_sessions s ON s.id = e.session_id
        WHERE s.period IN ('I', 'II', 'III', 'IV', 'V') AND e.present = 1
    """).fetchone()[0]
    assert regular == 0


def test_regular_subjects_round_robin(seeded):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))

    codes = [s['code'] for s in regular_subjects(seeded)]
    assert codes == ['23CSL103', '23CSP101', '23CST102', '23ENG105', '23MAT104']

    monday = seeded.execute("""
        SELECT s.period, sub.code FROM attendance_sessions s
        JOIN subjects sub ON sub.id = s.subject_id
        WHERE s.date = '2025-04-07' AND s.period IN ('I', 'II', 'III', 'IV', 'V')
    """).fetchall()
    assert {row['period']: row['code'] for row in monday} == dict(zip(['I', 'II', 'III', 'IV', 'V'], codes))


def test_regeneration_is_idempotent(seeded):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))
    generate_week(seeded, today=datetime.date(2025, 4, 13), rng=random.Random(2))

    assert _count(seeded, 'attendance_sessions') == 48
    assert _count(seeded, 'attendance_entries') == 480


def test_cleanup_reaches_back_to_the_weekend(seeded):
    sid = attendance_store.get_subject_by_code(seeded, '23CSP101')['id']
    with seeded:
        saturday = attendance_store.create_session(seeded, sid, '2025-04-05', 'I')
        friday = attendance_store.create_session(seeded, sid, '2025-04-04', 'I')

    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))

    assert attendance_store.get_session(seeded, saturday) is None
    assert attendance_store.get_session(seeded, friday) is not None


def test_falls_back_to_all_subjects_without_assignments(conn):
    with conn:
        attendance_store.ensure_subject(conn, 'CS201', 'Algorithms', 'II CSE A')
        attendance_store.ensure_subject(conn, 'CS202', 'Databases', 'II CSE A')

    result = generate_week(conn, today=WEDNESDAY, rng=random.Random(1))

    assert [s['code'] for s in regular_subjects(conn)] == ['CS201', 'CS202']
    assert result['sessions'] == 48
    # No students yet: sessions exist, entries do not
    assert result['entries'] == 0


def test_no_regular_subjects_leaves_special_periods_only(conn):
    result = generate_week(conn, today=WEDNESDAY, rng=random.Random(1))
    assert result['sessions'] == 6 * 3


def test_staff_are_linked_to_special_subjects(seeded):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))

    staff_id = seeded.execute("SELECT id FROM users WHERE email = 'staff2@college.edu'").fetchone()['id']
    codes = {s['code'] for s in attendance_store.get_subjects(
        seeded, attendance_store.staff_subject_ids(seeded, staff_id))}
    assert codes == {'23CST102', 'FREE001', 'LIB001', 'ONL001'}


def test_failed_generation_rolls_back(seeded, monkeypatch):
    generate_week(seeded, today=WEDNESDAY, rng=random.Random(1))
    before = {row['id'] for row in seeded.execute("SELECT id FROM attendance_sessions").fetchall()}

    real_create = attendance_store.create_session
    calls = []

    def flaky_create(conn, subject_id, date, period):
        calls.append(period)
        if len(calls) == 10:
            raise RuntimeError('disk full')
        return real_create(conn, subject_id, date, period)

    monkeypatch.setattr(attendance_store, 'create_session', flaky_create)

    with pytest.raises(RuntimeError):
        generate_week(seeded, today=WEDNESDAY, rng=random.Random(2))

    after = {row['id'] for row in seeded.execute("SELECT id FROM attendance_sessions").fetchall()}
    assert after == before
    assert _count(seeded, 'attendance_entries') == 480
