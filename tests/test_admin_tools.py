import pytest

from admin_tools import assign_subject, main, set_role
from conftest import user_id
from identity import get_user_by_email


def test_set_role(seeded):
    assert set_role(seeded, 'student2@college.edu', 'staff') == 'updated'
    assert get_user_by_email(seeded, 'student2@college.edu')['role'] == 'staff'

    assert set_role(seeded, 'hod@college.edu', 'admin') == 'created'
    assert get_user_by_email(seeded, 'hod@college.edu')['role'] == 'admin'

    with pytest.raises(ValueError):
        set_role(seeded, 'student2@college.edu', 'principal')


def test_assign_subject(seeded):
    assert assign_subject(seeded, 'staff2@college.edu', '23CSP101') is True
    assert assign_subject(seeded, 'staff2@college.edu', '23CSP101') is False

    with pytest.raises(ValueError):
        assign_subject(seeded, 'student1@college.edu', '23CSP101')
    with pytest.raises(ValueError):
        assign_subject(seeded, 'staff2@college.edu', 'NOPE')


def test_cli_generate_week(seeded, db_path, capsys):
    assert main(['--db', db_path, 'generate-week', '--date', '2025-04-09']) == 0
    assert 'Generated 48 sessions / 480 entries for 2025-04-07..2025-04-12' in capsys.readouterr().out

    assert main(['--db', db_path, 'session-dates']) == 0
    out = capsys.readouterr().out
    assert '2025-04-07: 8' in out
    assert '2025-04-12: 8' in out


def test_cli_reports_errors(seeded, db_path, capsys):
    assert main(['--db', db_path, 'assign-subject', 'staff1@college.edu', 'NOPE']) == 1
    assert '[ERROR]' in capsys.readouterr().out
    assert user_id(seeded, 'staff1@college.edu')
