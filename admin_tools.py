# =================================================================
#   CollegeConnect - Operator Tools
#
#   Usage:
#     python admin_tools.py set-role staff@college.edu staff
#     python admin_tools.py assign-subject staff1@college.edu 23CSP101
#     python admin_tools.py generate-week [--date 2025-04-07]
#     python admin_tools.py session-dates
# =================================================================

import argparse
import datetime
import os
import sys
import uuid
from contextlib import closing

from dotenv import load_dotenv

import attendance_store as store
from database_setup import connect, create_schema
from identity import ROLES, get_user_by_email
from week_generator import generate_week

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))


def set_role(conn, email, role):
    """Set a user's role, creating the user when the email is unknown."""
    if role not in ROLES:
        raise ValueError(f"Role must be one of {', '.join(ROLES)}")
    with conn:
        user = get_user_by_email(conn, email)
        if user is None:
            conn.execute(
                "INSERT INTO users (id, email, name, role) VALUES (?, ?, ?, ?)",
                (str(uuid.uuid4()), email, email.split('@')[0], role)
            )
            return 'created'
        conn.execute(
            "UPDATE users SET role = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?", (role, user['id'])
        )
        return 'updated'


def assign_subject(conn, email, code):
    user = get_user_by_email(conn, email)
    if user is None or user['role'] != 'staff':
        raise ValueError(f"No staff user with email {email}")
    subject = store.get_subject_by_code(conn, code)
    if subject is None:
        raise ValueError(f"No subject with code {code}")
    with conn:
        return store.ensure_staff_subject(conn, user['id'], subject['id'])


def main(argv=None):
    parser = argparse.ArgumentParser(description="CollegeConnect attendance operator tools")
    parser.add_argument('--db', default=os.environ.get('DATABASE_PATH', 'collegeconnect.db'))
    commands = parser.add_subparsers(dest='command', required=True)

    role_cmd = commands.add_parser('set-role', help="Set a user's role")
    role_cmd.add_argument('email')
    role_cmd.add_argument('role', choices=ROLES)

    assign_cmd = commands.add_parser('assign-subject', help='Link a staff member to a subject')
    assign_cmd.add_argument('email')
    assign_cmd.add_argument('code')

    week_cmd = commands.add_parser('generate-week', help="Regenerate a week's sessions and entries")
    week_cmd.add_argument('--date', type=datetime.date.fromisoformat, default=None,
                          help='Any day of the target week (default: today)')

    commands.add_parser('session-dates', help='Session count per date')

    args = parser.parse_args(argv)

    with closing(connect(args.db)) as conn:
        create_schema(conn)
        try:
            if args.command == 'set-role':
                outcome = set_role(conn, args.email, args.role)
                print(f"{outcome.capitalize()} {args.email} -> {args.role}")
            elif args.command == 'assign-subject':
                added = assign_subject(conn, args.email, args.code)
                print(f"{args.email} -> {args.code}" + ("" if added else " (already assigned)"))
            elif args.command == 'generate-week':
                result = generate_week(conn, today=args.date)
                print(f"Generated {result['sessions']} sessions / {result['entries']} entries "
                      f"for {result['days'][0]}..{result['days'][-1]}")
            elif args.command == 'session-dates':
                for row in store.session_dates(conn):
                    print(f"  {row['date']}: {row['sessions']}")
        except ValueError as e:
            print(f"[ERROR] {e}")
            return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
