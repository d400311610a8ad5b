import datetime
import math
import re

import attendance_store as store
from config import Config
from database_setup import FIRST_SEMESTER_SECTION, FIRST_SEMESTER_SUBJECTS, PERIOD_ORDER
from roll_numbers import derive_roll_number, roll_sort_key, roll_to_email, roster_roll_number
from week_generator import week_monday

DAY_NAMES = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')


def calculate_status(present_count, total_sessions, target_percent=None, critical_percent=None):
    """
    Attendance standing of a student against the institute minimum.

    Returns a dict with:
        - current_percent (float)
        - status (str): 'Good', 'Warning', 'Critical'
        - needed_to_recover (int): classes to attend consecutively to reach target
        - buffer_available (int): classes that can be missed while staying above target
    """
    target_percent = Config.MINIMUM_ATTENDANCE_PERCENTAGE if target_percent is None else target_percent
    critical_percent = Config.ATTENDANCE_WARNING_THRESHOLD if critical_percent is None else critical_percent

    if total_sessions == 0:
        return {"current_percent": 0.0, "status": "Good", "needed_to_recover": 0, "buffer_available": 0}

    current_percent = (present_count / total_sessions) * 100
    if current_percent < critical_percent:
        status = "Critical"
    elif current_percent < target_percent:
        status = "Warning"
    else:
        status = "Good"

    # (present + x) / (total + x) >= target  =>  x >= (target * total - present) / (1 - target)
    target_rate = target_percent / 100.0
    needed_to_recover = 0
    if current_percent < target_percent:
        denominator = 1.0 - target_rate
        needed_to_recover = math.ceil(((total_sessions * target_rate) - present_count) / denominator) \
            if denominator > 0 else 999

    # present / (total + x) >= target  =>  x <= present / target - total
    buffer_available = 0
    if current_percent > target_percent and target_rate > 0:
        buffer_available = int(present_count / target_rate - total_sessions)

    return {
        "current_percent": round(current_percent, 1),
        "status": status,
        "needed_to_recover": needed_to_recover,
        "buffer_available": buffer_available,
    }


# =============================================================================
#   Helpers
# =============================================================================

def day_name(date_str):
    return DAY_NAMES[datetime.date.fromisoformat(date_str).weekday()]


def format_date(date_str):
    """2025-04-07 -> '07, Apr, 2025'"""
    return datetime.date.fromisoformat(date_str).strftime('%d, %b, %Y')


def _session_order(session):
    return session['date'], store.period_rank(session['period'])


def _enrich_entries(conn, entries):
    """Attach date/period/subject of each entry's session; entries with no session are dropped."""
    session_by_id = {s['id']: s for s in store.get_sessions(conn, {e['session_id'] for e in entries})}
    subject_by_id = {s['id']: s for s in store.get_subjects(conn, {s['subject_id'] for s in session_by_id.values()})}

    enriched = []
    for entry in entries:
        session = session_by_id.get(entry['session_id'])
        if session is None:
            continue
        item = store.entry_to_dict(entry)
        item.update({
            'date': session['date'],
            'period': session['period'],
            'subject': store.subject_to_dict(subject_by_id.get(session['subject_id'])),
        })
        enriched.append(item)
    return enriched


# =============================================================================
#   Staff views
# =============================================================================

def staff_timetable(conn, staff, start_date=None, end_date=None, today=None):
    """Sessions of the staff member's subjects grouped by date, then by period."""
    result = {
        'staff': {'id': staff['id'], 'name': staff['name'], 'email': staff['email']},
        'periodOrder': list(PERIOD_ORDER),
        'days': [],
        'range': None,
    }

    subject_ids = store.staff_subject_ids(conn, staff['id'])
    if not subject_ids:
        return result
    subject_by_id = {s['id']: s for s in store.get_subjects(conn, subject_ids)}

    if not start_date or not end_date:
        monday = week_monday(today)
        start_date = start_date or monday.isoformat()
        end_date = end_date or (monday + datetime.timedelta(days=5)).isoformat()

    days = {}
    for session in sorted(store.sessions_for_subjects(conn, subject_ids, start_date, end_date), key=_session_order):
        subject = subject_by_id.get(session['subject_id'])
        if subject is None:
            continue
        day = days.setdefault(session['date'], {
            'date': session['date'],
            'dayName': day_name(session['date']),
            'slots': {},
        })
        day['slots'].setdefault(session['period'], []).append({
            'sessionId': session['id'],
            'period': session['period'],
            'subjectId': subject['id'],
            'subjectCode': subject['code'],
            'subjectName': subject['name'],
            'section': subject['section'],
        })

    result['days'] = [day for _, day in sorted(days.items()) if day['slots']]
    if result['days']:
        result['range'] = {'startDate': result['days'][0]['date'], 'endDate': result['days'][-1]['date']}
    return result


def session_entries(conn, session_id):
    return [store.entry_to_dict(row) for row in store.entries_for_session(conn, session_id)]


def subject_roster(conn, subject_ref):
    """Enrolled students of a subject ordered by the numeric part of their roll number."""
    subject_id = store.resolve_subject_ref(conn, subject_ref)
    students = sorted(store.enrolled_students(conn, subject_id), key=lambda s: roll_sort_key(s['email']))
    return [
        {
            'id': s['id'],
            'name': s['name'] or 'Unknown',
            'email': s['email'],
            'rollNo': roster_roll_number(s['email']),
        }
        for s in students
    ]


def search_sessions(conn, subject_ref, date=None):
    subject_id = store.resolve_subject_ref(conn, subject_ref)
    query = "SELECT * FROM attendance_sessions WHERE subject_id = ?"
    params = [subject_id]
    if date:
        query += " AND date = ?"
        params.append(date)
    sessions = conn.execute(query, params).fetchall()
    sessions.sort(key=lambda s: store.period_rank(s['period']))
    sessions.sort(key=lambda s: s['date'], reverse=True)

    counts = store.entry_counts_by_session(conn, [s['id'] for s in sessions])
    results = []
    for session in sessions:
        total = counts.get(session['id'], 0)
        results.append({
            'id': session['id'],
            'subjectId': session['subject_id'],
            'date': session['date'],
            'formattedDate': format_date(session['date']),
            'dayName': day_name(session['date']),
            'period': session['period'],
            'completed': total > 0,
            'totalStudents': total,
            'createdAt': session['created_at'],
            'updatedAt': session['updated_at'],
        })
    return results


# =============================================================================
#   Student views
# =============================================================================

def student_entries(conn, student_id):
    return _enrich_entries(conn, store.entries_for_student(conn, student_id))


def student_summary(conn, student_id):
    row = conn.execute("""
        SELECT COUNT(*) AS total, COALESCE(SUM(present), 0) AS present
        FROM attendance_entries WHERE student_id = ?
    """, (student_id,)).fetchone()
    total, present = row['total'], row['present']
    standing = calculate_status(present, total)
    return {
        'studentId': student_id,
        'present': present,
        'absent': total - present,
        'total': total,
        'percentage': standing['current_percent'],
        'status': standing['status'],
        'neededToRecover': standing['needed_to_recover'],
        'bufferAvailable': standing['buffer_available'],
    }


def find_student_by_roll(conn, roll_no):
    roll_no = roll_no.strip().upper()
    for student in store.users_with_role(conn, 'student'):
        derived = derive_roll_number(student['email'])
        if derived and derived.upper() == roll_no:
            return student
    return None


def student_by_roll(conn, student):
    entries = student_entries(conn, student['id'])
    sections = []
    for entry in entries:
        section = entry['subject']['section'] if entry['subject'] else None
        if section and section not in sections:
            sections.append(section)
    return {
        'student': {
            'id': student['id'],
            'name': student['name'],
            'email': student['email'],
            'rollNo': derive_roll_number(student['email']),
            'sections': sections,
        },
        'entries': entries,
    }


# =============================================================================
#   Admin views
# =============================================================================

def overview_limit(raw_limit):
    """Default 200, capped at 500; unparsable values fall back to the default."""
    if not raw_limit:
        return Config.OVERVIEW_DEFAULT_LIMIT
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        return Config.OVERVIEW_DEFAULT_LIMIT
    if limit <= 0:
        return Config.OVERVIEW_DEFAULT_LIMIT
    return min(limit, Config.OVERVIEW_MAX_LIMIT)


def overview(conn, roll_no=None, limit=None):
    """Most recent entries system-wide or for one student, with student/session/subject attached."""
    student_id = None
    if roll_no:
        student = find_student_by_roll(conn, roll_no)
        if student is None:
            target_email = roll_to_email(roll_no) or roll_no
            student = conn.execute("SELECT id FROM users WHERE email = ?", (target_email,)).fetchone()
        if student is None:
            return []
        student_id = student['id']

    entries = store.recent_entries(conn, overview_limit(limit), student_id)
    if not entries:
        return []

    session_by_id = {s['id']: s for s in store.get_sessions(conn, {e['session_id'] for e in entries})}
    student_by_id = {u['id']: u for u in store.get_users(conn, {e['student_id'] for e in entries})}
    subject_by_id = {s['id']: s for s in store.get_subjects(conn, {s['subject_id'] for s in session_by_id.values()})}

    results = []
    for entry in entries:
        session = session_by_id.get(entry['session_id'])
        student = student_by_id.get(entry['student_id'])
        subject = subject_by_id.get(session['subject_id']) if session else None
        results.append({
            'id': entry['id'],
            'studentId': entry['student_id'],
            'sessionId': entry['session_id'],
            'status': 'present' if entry['present'] else 'absent',
            'createdAt': entry['created_at'],
            'student': {
                'id': student['id'],
                'name': student['name'],
                'email': student['email'],
                'rollNumber': derive_roll_number(student['email']),
            } if student else None,
            'session': {
                'id': session['id'],
                'date': session['date'],
                'period': session['period'],
                'subject': store.subject_to_dict(subject),
            } if session else None,
        })
    return results


# =============================================================================
#   Subject statistics
# =============================================================================

def _default_subject_for(staff):
    match = re.search(r'\d+', staff['email'].split('@')[0])
    index = int(match.group()) - 1 if match else 0
    if not 0 <= index < len(FIRST_SEMESTER_SUBJECTS):
        index = 0
    return FIRST_SEMESTER_SUBJECTS[index]


def assigned_subjects(conn, staff):
    """
    Subjects taught by a staff member, with per-subject attendance statistics.

    The special subjects are created and linked to the staff member on the
    way; a staff member without any assignment gets a default subject from
    the first-semester catalogue.
    """
    with conn:
        had_links = bool(store.staff_subject_ids(conn, staff['id']))
        for special in store.ensure_special_subjects(conn):
            store.ensure_staff_subject(conn, staff['id'], special['id'])
        if not had_links:
            code, name = _default_subject_for(staff)
            subject = store.ensure_subject(conn, code, name, FIRST_SEMESTER_SECTION)
            store.ensure_staff_subject(conn, staff['id'], subject['id'])

    subjects = store.get_subjects(conn, store.staff_subject_ids(conn, staff['id']))
    subject_ids = [s['id'] for s in subjects]

    sessions = store.sessions_for_subjects(conn, subject_ids)
    entry_counts = store.entry_counts_by_session(conn, [s['id'] for s in sessions])
    enrollment_counts = store.enrollment_counts(conn, subject_ids)

    sessions_by_subject = {}
    for session in sessions:
        sessions_by_subject.setdefault(session['subject_id'], []).append(session)

    results = []
    for subject in subjects:
        subject_sessions = sessions_by_subject.get(subject['id'], [])
        total = len(subject_sessions)
        pending = sum(1 for s in subject_sessions if not entry_counts.get(s['id']))
        item = store.subject_to_dict(subject)
        item['stats'] = {
            'totalPeriods': total,
            'allocatedHours': total,
            'pendingAttendance': f"{pending}/{total}",
            'completedAttendance': total - pending,
            'totalStudents': enrollment_counts.get(subject['id'], 0),
        }
        results.append(item)
    return results