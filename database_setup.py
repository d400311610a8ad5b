import sqlite3
import os
import sys
import uuid
from dotenv import load_dotenv

# =================================================================
#   CollegeConnect Database Setup Script
#   - Creates the attendance schema (idempotent).
#   - --reset drops the existing tables first.
#   - --seed loads the first-semester demo roster.
# =================================================================

# Load environment variables
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

PERIOD_ORDER = ('I', 'II', 'III', 'IV', 'V', 'VI', 'VII', 'VIII')

_TIMESTAMP = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

SCHEMA = [
    # 1. Users: every principal that has been seen by the service.
    f"""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL COLLATE NOCASE,
        name TEXT,
        role TEXT NOT NULL DEFAULT 'student' CHECK (role IN ('student', 'staff', 'admin')),
        created_at TEXT NOT NULL DEFAULT {_TIMESTAMP},
        updated_at TEXT NOT NULL DEFAULT {_TIMESTAMP}
    )
    """,
    # 2. Subjects, including the FREE001/LIB001/ONL001 sentinel rows.
    f"""
    CREATE TABLE IF NOT EXISTS subjects (
        id TEXT PRIMARY KEY,
        code TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        section TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_TIMESTAMP},
        updated_at TEXT NOT NULL DEFAULT {_TIMESTAMP}
    )
    """,
    # 3. Staff <-> subject assignments (a staff member's timetable).
    """
    CREATE TABLE IF NOT EXISTS staff_subjects (
        id TEXT PRIMARY KEY,
        staff_id TEXT NOT NULL,
        subject_id TEXT NOT NULL,
        UNIQUE (staff_id, subject_id),
        FOREIGN KEY (staff_id) REFERENCES users (id) ON DELETE CASCADE,
        FOREIGN KEY (subject_id) REFERENCES subjects (id) ON DELETE CASCADE
    )
    """,
    # 4. Enrollments: a subject's attendance roster.
    """
    CREATE TABLE IF NOT EXISTS enrollments (
        id TEXT PRIMARY KEY,
        subject_id TEXT NOT NULL,
        student_id TEXT NOT NULL,
        UNIQUE (subject_id, student_id),
        FOREIGN KEY (subject_id) REFERENCES subjects (id) ON DELETE CASCADE,
        FOREIGN KEY (student_id) REFERENCES users (id) ON DELETE CASCADE
    )
    """,
    # 5. Sessions: one per subject, date and period.
    f"""
    CREATE TABLE IF NOT EXISTS attendance_sessions (
        id TEXT PRIMARY KEY,
        subject_id TEXT NOT NULL,
        date TEXT NOT NULL,
        period TEXT NOT NULL CHECK (period IN ({', '.join(repr(p) for p in PERIOD_ORDER)})),
        created_at TEXT NOT NULL DEFAULT {_TIMESTAMP},
        updated_at TEXT NOT NULL DEFAULT {_TIMESTAMP},
        UNIQUE (subject_id, date, period),
        FOREIGN KEY (subject_id) REFERENCES subjects (id) ON DELETE CASCADE
    )
    """,
    # 6. Entries: one per session and student.
    f"""
    CREATE TABLE IF NOT EXISTS attendance_entries (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        student_id TEXT NOT NULL,
        present INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT {_TIMESTAMP},
        UNIQUE (session_id, student_id),
        FOREIGN KEY (session_id) REFERENCES attendance_sessions (id) ON DELETE CASCADE,
        FOREIGN KEY (student_id) REFERENCES users (id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_date ON attendance_sessions (date)",
    "CREATE INDEX IF NOT EXISTS idx_entries_student ON attendance_entries (student_id)",
]

TABLES = ('attendance_entries', 'attendance_sessions', 'enrollments',
          'staff_subjects', 'subjects', 'users')

DEMO_STAFF = [
    ('Dr. John Doe', 'staff1@college.edu'),
    ('Dr. Jane Smith', 'staff2@college.edu'),
    ('Prof. Robert Johnson', 'staff3@college.edu'),
    ('Dr. Sarah Williams', 'staff4@college.edu'),
    ('Prof. Michael Brown', 'staff5@college.edu'),
]

DEMO_STUDENTS = [
    'Alice Johnson', 'Bob Anderson', 'Charlie Brown', 'Diana Prince', 'Ethan Hunt',
    'Fiona Apple', 'George Washington', 'Hannah Montana', 'Ian Fleming', 'Jessica Jones',
]

# First semester catalogue; also used to give an unassigned staff member a default subject.
FIRST_SEMESTER_SUBJECTS = [
    ('23CSP101', 'Programming Fundamentals'),
    ('23CST102', 'Data Structures'),
    ('23CSL103', 'Programming Lab'),
    ('23MAT104', 'Mathematics I'),
    ('23ENG105', 'English Communication'),
]
FIRST_SEMESTER_SECTION = 'I CSE A'


def connect(db_path):
    """Open a connection with named rows and foreign keys enforced."""
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def create_schema(conn, reset=False):
    with conn:
        if reset:
            for table in TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        for statement in SCHEMA:
            conn.execute(statement)


def seed_demo_data(conn):
    """
    Load the demo roster: one admin, five staff, ten students and the five
    first-semester subjects, every student enrolled in every subject and
    staff N teaching subject N. Rows that already exist are left alone.
    """
    with conn:
        conn.execute(
            "INSERT OR IGNORE INTO users (id, email, name, role) VALUES (?, ?, ?, 'admin')",
            (str(uuid.uuid4()), 'admin@college.edu', 'Administrator')
        )
        for name, email in DEMO_STAFF:
            conn.execute(
                "INSERT OR IGNORE INTO users (id, email, name, role) VALUES (?, ?, ?, 'staff')",
                (str(uuid.uuid4()), email, name)
            )
        for number, name in enumerate(DEMO_STUDENTS, start=1):
            conn.execute(
                "INSERT OR IGNORE INTO users (id, email, name, role) VALUES (?, ?, ?, 'student')",
                (str(uuid.uuid4()), f'student{number}@college.edu', name)
            )
        for code, name in FIRST_SEMESTER_SUBJECTS:
            conn.execute(
                "INSERT OR IGNORE INTO subjects (id, code, name, section) VALUES (?, ?, ?, ?)",
                (str(uuid.uuid4()), code, name, FIRST_SEMESTER_SECTION)
            )

        subjects = conn.execute(
            "SELECT id, code FROM subjects WHERE code IN ({})".format(
                ','.join('?' * len(FIRST_SEMESTER_SUBJECTS))),
            [code for code, _ in FIRST_SEMESTER_SUBJECTS]
        ).fetchall()
        subject_by_code = {row['code']: row['id'] for row in subjects}
        students = conn.execute("SELECT id FROM users WHERE role = 'student'").fetchall()

        for student in students:
            for subject_id in subject_by_code.values():
                conn.execute(
                    "INSERT OR IGNORE INTO enrollments (id, subject_id, student_id) VALUES (?, ?, ?)",
                    (str(uuid.uuid4()), subject_id, student['id'])
                )

        for (_, email), (code, _) in zip(DEMO_STAFF, FIRST_SEMESTER_SUBJECTS):
            staff = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
            conn.execute(
                "INSERT OR IGNORE INTO staff_subjects (id, staff_id, subject_id) VALUES (?, ?, ?)",
                (str(uuid.uuid4()), staff['id'], subject_by_code[code])
            )

    return {
        'students': len(students),
        'subjects': len(subject_by_code),
        'staff': len(DEMO_STAFF),
    }


def setup_database(db_path=None, reset=False, seed=False):
    """Create (and optionally reset / seed) the database at db_path."""
    db_path = db_path or os.environ.get('DATABASE_PATH', 'collegeconnect.db')
    connection = None
    try:
        connection = connect(db_path)
        create_schema(connection, reset=reset)
        print(f"Schema ready in '{db_path}'" + (" (tables reset)" if reset else ""))
        if seed:
            counts = seed_demo_data(connection)
            print(f"Demo data loaded: {counts['staff']} staff, {counts['students']} students, "
                  f"{counts['subjects']} subjects")
    except sqlite3.Error as e:
        print(f"An error occurred: {e}")
        raise
    finally:
        if connection:
            connection.close()


if __name__ == '__main__':
    print("Starting database setup...")
    setup_database(reset='--reset' in sys.argv, seed='--seed' in sys.argv)
    print("\nDatabase setup complete.")
