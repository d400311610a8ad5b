# =================================================================
#   CollegeConnect - Session / Entry Store
#   Plain SQL helpers over subjects, staff_subjects, enrollments,
#   attendance_sessions and attendance_entries. None of these commit;
#   callers group them in a transaction with `with conn:`.
# =================================================================

import datetime
import uuid

from database_setup import PERIOD_ORDER

SPECIAL_SUBJECTS = (
    ('FREE001', 'Free Period'),
    ('LIB001', 'Library Period'),
    ('ONL001', 'Online Course Period'),
)
SPECIAL_CODES = tuple(code for code, _ in SPECIAL_SUBJECTS)
SPECIAL_SECTION = 'ALL'

SUBJECT_CODE_PREFIX = 'SUBJ-'

_CHUNK = 900


def new_id():
    return str(uuid.uuid4())


def _now():
    return datetime.datetime.now(datetime.timezone.utc).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]


def _placeholders(values):
    return ','.join('?' * len(values))


def _chunks(values):
    """Split id lists to stay under SQLite's bound-variable limit."""
    values = list(values)
    for start in range(0, len(values), _CHUNK):
        yield values[start:start + _CHUNK]


def subject_to_dict(row):
    if row is None:
        return None
    return {
        'id': row['id'],
        'code': row['code'],
        'name': row['name'],
        'section': row['section'],
    }


# --- Subjects ---

def get_subject(conn, subject_id):
    return conn.execute(
        "SELECT id, code, name, section FROM subjects WHERE id = ?", (subject_id,)
    ).fetchone()


def get_subject_by_code(conn, code):
    return conn.execute(
        "SELECT id, code, name, section FROM subjects WHERE code = ?", (code,)
    ).fetchone()


def get_subjects(conn, subject_ids=None):
    """All subjects ordered by code, or only those in subject_ids."""
    if subject_ids is None:
        return conn.execute(
            "SELECT id, code, name, section FROM subjects ORDER BY code"
        ).fetchall()
    rows = []
    for chunk in _chunks(set(subject_ids)):
        rows.extend(conn.execute(
            f"SELECT id, code, name, section FROM subjects WHERE id IN ({_placeholders(chunk)})",
            chunk
        ).fetchall())
    return sorted(rows, key=lambda row: row['code'])


def ensure_subject(conn, code, name, section):
    """Create-by-code; an existing row with the same code is returned untouched."""
    conn.execute(
        "INSERT OR IGNORE INTO subjects (id, code, name, section) VALUES (?, ?, ?, ?)",
        (new_id(), code, name, section)
    )
    return get_subject_by_code(conn, code)


def ensure_special_subjects(conn):
    """Returns the Free / Library / Online subjects in period VI, VII, VIII order."""
    return [ensure_subject(conn, code, name, SPECIAL_SECTION) for code, name in SPECIAL_SUBJECTS]


def resolve_subject_ref(conn, ref):
    """
    Turn a subject reference into a subject id.

    ref may be the typed form {"kind": "code" | "id", "value": ...} or a
    plain string. A plain string with the SUBJ- prefix is a code; any other
    string is tried as an id and then as a code. When nothing matches, the
    reference value is returned unchanged.
    """
    if not ref:
        return None
    if isinstance(ref, dict):
        kind = ref.get('kind')
        value = str(ref.get('value') or '').strip()
        if not value:
            return None
        if kind == 'code':
            subject = get_subject_by_code(conn, value)
            return subject['id'] if subject else value
        return value

    value = str(ref).strip()
    if value.startswith(SUBJECT_CODE_PREFIX):
        subject = get_subject_by_code(conn, value[len(SUBJECT_CODE_PREFIX):])
        return subject['id'] if subject else value
    if get_subject(conn, value) is not None:
        return value
    subject = get_subject_by_code(conn, value)
    return subject['id'] if subject else value


# --- Staff assignments and enrollments ---

def ensure_staff_subject(conn, staff_id, subject_id):
    cursor = conn.execute(
        "INSERT OR IGNORE INTO staff_subjects (id, staff_id, subject_id) VALUES (?, ?, ?)",
        (new_id(), staff_id, subject_id)
    )
    return cursor.rowcount > 0


def staff_subject_ids(conn, staff_id=None):
    if staff_id is None:
        rows = conn.execute("SELECT DISTINCT subject_id FROM staff_subjects").fetchall()
    else:
        rows = conn.execute(
            "SELECT subject_id FROM staff_subjects WHERE staff_id = ?", (staff_id,)
        ).fetchall()
    return [row['subject_id'] for row in rows]


def enrollment_counts(conn, subject_ids):
    counts = {}
    for chunk in _chunks(set(subject_ids)):
        for row in conn.execute(
            f"""SELECT subject_id, COUNT(*) AS count FROM enrollments
                WHERE subject_id IN ({_placeholders(chunk)}) GROUP BY subject_id""",
            chunk
        ).fetchall():
            counts[row['subject_id']] = row['count']
    return counts


def enrolled_students(conn, subject_id):
    return conn.execute("""
        SELECT u.id, u.email, u.name
        FROM enrollments e
        JOIN users u ON u.id = e.student_id
        WHERE e.subject_id = ?
        ORDER BY e.student_id
    """, (subject_id,)).fetchall()


def users_with_role(conn, role):
    return conn.execute(
        "SELECT id, email, name, role FROM users WHERE role = ? ORDER BY email", (role,)
    ).fetchall()


# --- Sessions ---

def get_session(conn, session_id):
    return conn.execute(
        "SELECT * FROM attendance_sessions WHERE id = ?", (session_id,)
    ).fetchone()


def find_session(conn, subject_id, date, period):
    return conn.execute(
        "SELECT * FROM attendance_sessions WHERE subject_id = ? AND date = ? AND period = ?",
        (subject_id, date, period)
    ).fetchone()


def create_session(conn, subject_id, date, period):
    session_id = new_id()
    conn.execute(
        "INSERT INTO attendance_sessions (id, subject_id, date, period) VALUES (?, ?, ?, ?)",
        (session_id, subject_id, date, period)
    )
    return session_id


def find_or_create_session(conn, subject_id, date, period):
    """
    Session id for the (subject, date, period) slot, creating it when absent.
    A concurrent writer that inserted the slot first wins; its row is returned.
    Returns (session_id, created).
    """
    cursor = conn.execute(
        "INSERT OR IGNORE INTO attendance_sessions (id, subject_id, date, period) VALUES (?, ?, ?, ?)",
        (new_id(), subject_id, date, period)
    )
    session = find_session(conn, subject_id, date, period)
    if session is None:
        raise ValueError(f"Could not store session for {subject_id} {date} period {period}")
    return session['id'], cursor.rowcount > 0


def touch_session(conn, session_id):
    conn.execute(
        "UPDATE attendance_sessions SET updated_at = ? WHERE id = ?", (_now(), session_id)
    )


def get_sessions(conn, session_ids):
    rows = []
    for chunk in _chunks(set(session_ids)):
        rows.extend(conn.execute(
            f"SELECT * FROM attendance_sessions WHERE id IN ({_placeholders(chunk)})",
            chunk
        ).fetchall())
    return rows


def sessions_for_subjects(conn, subject_ids, start_date=None, end_date=None):
    date_filter = ""
    date_params = []
    if start_date:
        date_filter += " AND date >= ?"
        date_params.append(start_date)
    if end_date:
        date_filter += " AND date <= ?"
        date_params.append(end_date)

    rows = []
    for chunk in _chunks(set(subject_ids)):
        rows.extend(conn.execute(
            f"SELECT * FROM attendance_sessions WHERE subject_id IN ({_placeholders(chunk)}){date_filter}",
            chunk + date_params
        ).fetchall())
    return rows


def delete_sessions_between(conn, start_date, end_date):
    """Delete every session dated in [start_date, end_date]; entries cascade."""
    cursor = conn.execute(
        "DELETE FROM attendance_sessions WHERE date BETWEEN ? AND ?", (start_date, end_date)
    )
    return cursor.rowcount


def session_dates(conn):
    return conn.execute("""
        SELECT date, COUNT(*) AS sessions
        FROM attendance_sessions
        GROUP BY date
        ORDER BY date
    """).fetchall()


def period_rank(period):
    try:
        return PERIOD_ORDER.index(period)
    except ValueError:
        return len(PERIOD_ORDER)


# --- Entries ---

def entry_to_dict(row):
    return {
        'id': row['id'],
        'sessionId': row['session_id'],
        'studentId': row['student_id'],
        'present': bool(row['present']),
        'createdAt': row['created_at'],
    }


def insert_entries(conn, session_id, entries):
    """entries: iterable of (student_id, present) pairs."""
    rows = [(new_id(), session_id, student_id, 1 if present else 0) for student_id, present in entries]
    conn.executemany(
        "INSERT INTO attendance_entries (id, session_id, student_id, present) VALUES (?, ?, ?, ?)",
        rows
    )
    return len(rows)


def replace_entries(conn, session_id, entries):
    """Destructive replace: drop the session's entries, then insert the new set."""
    conn.execute("DELETE FROM attendance_entries WHERE session_id = ?", (session_id,))
    return insert_entries(conn, session_id, entries)


def entries_for_session(conn, session_id):
    return conn.execute(
        "SELECT * FROM attendance_entries WHERE session_id = ? ORDER BY student_id",
        (session_id,)
    ).fetchall()


def entries_for_student(conn, student_id, limit=None):
    query = "SELECT * FROM attendance_entries WHERE student_id = ? ORDER BY created_at DESC, rowid DESC"
    params = [student_id]
    if limit:
        query += " LIMIT ?"
        params.append(limit)
    return conn.execute(query, params).fetchall()


def recent_entries(conn, limit, student_id=None):
    if student_id:
        return entries_for_student(conn, student_id, limit)
    return conn.execute(
        "SELECT * FROM attendance_entries ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
    ).fetchall()


def entry_counts_by_session(conn, session_ids):
    counts = {}
    for chunk in _chunks(set(session_ids)):
        for row in conn.execute(
            f"""SELECT session_id, COUNT(*) AS count FROM attendance_entries
                WHERE session_id IN ({_placeholders(chunk)}) GROUP BY session_id""",
            chunk
        ).fetchall():
            counts[row['session_id']] = row['count']
    return counts


def get_users(conn, user_ids):
    rows = []
    for chunk in _chunks(set(user_ids)):
        rows.extend(conn.execute(
            f"SELECT id, email, name, role FROM users WHERE id IN ({_placeholders(chunk)})",
            chunk
        ).fetchall())
    return rows


def existing_user_ids(conn, user_ids):
    return {row['id'] for row in get_users(conn, user_ids)}
