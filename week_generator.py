# =================================================================
#   CollegeConnect - Week Generator
#   Materializes the current week's (Mon-Sat) timetable: five regular
#   periods per day assigned round-robin, three special periods per day,
#   and one attendance entry per student in every session.
# =================================================================

import datetime
import logging
import random

import attendance_store as store
from config import Config

logger = logging.getLogger(__name__)

REGULAR_PERIODS = ('I', 'II', 'III', 'IV', 'V')
SPECIAL_PERIODS = ('VI', 'VII', 'VIII')
WEEK_DAYS = 6            # Monday..Saturday
CLEANUP_LOOKBACK_DAYS = 2  # weekend before Monday


def week_monday(today=None):
    """Monday of the week containing `today`; a Sunday belongs to the week before."""
    today = today or datetime.date.today()
    offset = -6 if today.weekday() == 6 else -today.weekday()
    return today + datetime.timedelta(days=offset)


def week_days(today=None):
    """ISO dates Monday..Saturday of the current week."""
    monday = week_monday(today)
    return [(monday + datetime.timedelta(days=i)).isoformat() for i in range(WEEK_DAYS)]


def regular_subjects(conn):
    """
    Non-special subjects assigned to any staff member, ordered by code.
    Falls back to every non-special subject when no staff has an assignment.
    """
    assigned = store.get_subjects(conn, store.staff_subject_ids(conn))
    subjects = [s for s in assigned if s['code'] not in store.SPECIAL_CODES]
    if not subjects:
        subjects = [s for s in store.get_subjects(conn) if s['code'] not in store.SPECIAL_CODES]
    return subjects


def generate_week(conn, today=None, rng=None, absence_probability=None):
    """
    Regenerate the week containing `today`.

    Every session dated from the Saturday before Monday through Saturday is
    deleted first, so repeated runs leave exactly one clean week. The whole
    regeneration is a single transaction.

    Returns {"sessions": int, "entries": int, "days": [iso dates]}.
    """
    rng = rng or random.Random()
    if absence_probability is None:
        absence_probability = Config.ABSENCE_PROBABILITY

    days = week_days(today)
    monday = datetime.date.fromisoformat(days[0])
    cleanup_start = (monday - datetime.timedelta(days=CLEANUP_LOOKBACK_DAYS)).isoformat()

    session_count = 0
    entry_count = 0

    with conn:
        specials = store.ensure_special_subjects(conn)
        subjects = regular_subjects(conn)

        for staff in store.users_with_role(conn, 'staff'):
            for subject in specials:
                store.ensure_staff_subject(conn, staff['id'], subject['id'])

        student_ids = [s['id'] for s in store.users_with_role(conn, 'student')]

        removed = store.delete_sessions_between(conn, cleanup_start, days[-1])
        if removed:
            logger.info(f"[WEEK] Removed {removed} existing session(s) between {cleanup_start} and {days[-1]}")

        for day_index, date_str in enumerate(days):
            if subjects:
                for period_index, period in enumerate(REGULAR_PERIODS):
                    subject = subjects[(day_index * len(REGULAR_PERIODS) + period_index) % len(subjects)]
                    session_id = store.create_session(conn, subject['id'], date_str, period)
                    session_count += 1
                    entry_count += store.insert_entries(
                        conn, session_id,
                        ((sid, rng.random() > absence_probability) for sid in student_ids)
                    )

            for period, subject in zip(SPECIAL_PERIODS, specials):
                session_id = store.create_session(conn, subject['id'], date_str, period)
                session_count += 1
                entry_count += store.insert_entries(conn, session_id, ((sid, True) for sid in student_ids))

    logger.info(f"[WEEK] Generated {session_count} sessions / {entry_count} entries "
                f"for {days[0]}..{days[-1]} ({len(subjects)} regular subject(s))")
    return {'sessions': session_count, 'entries': entry_count, 'days': days}
