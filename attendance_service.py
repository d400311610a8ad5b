# =================================================================
#   CollegeConnect - Attendance Upsert
#   "Replace all entries for a session": resolve or create the session,
#   swap its entries inside one transaction and hand back the domain
#   events for the notifier.
# =================================================================

import datetime
import logging
import re

import attendance_store as store
from database_setup import PERIOD_ORDER
from errors import NotFoundError, ValidationError
from notifier import AttendanceUpdated, SessionUpdated

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def normalize_date(value):
    """Strip any time component and check the YYYY-MM-DD shape."""
    date_str = str(value).strip().split('T')[0].split(' ')[0]
    if not _ISO_DATE.match(date_str):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")
    try:
        return datetime.date.fromisoformat(date_str).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _parse_entries(entries):
    if not entries or not isinstance(entries, list):
        raise ValidationError('No entries provided')
    by_student = {}
    for item in entries:
        if not isinstance(item, dict) or not str(item.get('studentId') or '').strip():
            raise ValidationError('Each entry needs a studentId')
        # Last entry for a student wins
        by_student[str(item['studentId']).strip()] = bool(item.get('present'))
    return list(by_student.items())


def upsert_session(conn, payload):
    """
    Post attendance for one session.

    payload: {sessionId?, subjectId? | subjectRef?, date?, period?,
              entries: [{studentId, present}]}

    Without sessionId the session is found by (subject, date, period) or
    created. With sessionId the existing session's entries are replaced.
    Returns (session_id, events).
    """
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    entries = _parse_entries(payload.get('entries'))

    session_id = payload.get('sessionId')
    subject_ref = payload.get('subjectRef') or payload.get('subjectId')

    if session_id:
        session = store.get_session(conn, session_id)
        if session is None:
            raise NotFoundError('Session not found')
        subject_id, date_str, period = session['subject_id'], session['date'], session['period']
    else:
        date_raw, period = payload.get('date'), payload.get('period')
        if not subject_ref or not date_raw or not period:
            raise ValidationError('Missing subjectId/date/period when sessionId not provided')
        if period not in PERIOD_ORDER:
            raise ValidationError(f"Invalid period '{period}', expected one of {', '.join(PERIOD_ORDER)}")
        date_str = normalize_date(date_raw)
        subject_id = store.resolve_subject_ref(conn, subject_ref)
        if store.get_subject(conn, subject_id) is None:
            raise NotFoundError('Subject not found')

    unknown = {sid for sid, _ in entries} - store.existing_user_ids(conn, [sid for sid, _ in entries])
    if unknown:
        raise ValidationError(f"Unknown student id(s): {', '.join(sorted(unknown))}")

    with conn:
        if not session_id:
            session_id, created = store.find_or_create_session(conn, subject_id, date_str, period)
            if created:
                logger.info(f"[UPSERT] Created session {session_id} for {subject_id} {date_str} period {period}")
        store.replace_entries(conn, session_id, entries)
        store.touch_session(conn, session_id)

    present = sum(1 for _, p in entries if p)
    logger.info(f"[UPSERT] Session {session_id}: {len(entries)} entries written ({present} present)")

    events = [
        AttendanceUpdated(session_id, student_id, is_present, subject_id, date_str, period)
        for student_id, is_present in entries
    ]
    events.append(SessionUpdated(session_id, subject_id, date_str, period))
    return session_id, events
