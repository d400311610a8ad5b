# =================================================================
#   CollegeConnect - Roll Number Codec
#   Roll numbers are not stored; they are derived from the login
#   email by the institute convention student<N>@<domain> <-> 21BCS<NNN>
# =================================================================

import re

from config import Config

_STUDENT_LOCAL_PART = re.compile(r'student(\d+)', re.IGNORECASE)
_TRAILING_SERIAL = re.compile(r'(\d{3})$')


def _local_part(email):
    return email.split('@')[0]


def derive_roll_number(email, prefix=None):
    """
    Derive the display roll number from a student email.

    student7@college.edu -> 21BCS007. Returns None when the local part
    does not follow the student<N> pattern.
    """
    if not email:
        return None
    match = _STUDENT_LOCAL_PART.search(_local_part(email))
    if not match:
        return None
    return f"{prefix or Config.ROLL_NUMBER_PREFIX}{match.group(1).zfill(3)}"


def roll_to_email(roll, domain=None):
    """Inverse of derive_roll_number: 21BCS007 -> student007@college.edu."""
    if not roll:
        return None
    match = _TRAILING_SERIAL.search(roll.strip())
    if not match:
        return None
    serial = match.group(1).lstrip('0')
    return f"student{serial.zfill(3)}@{domain or Config.STUDENT_EMAIL_DOMAIN}"


def roll_sort_key(email):
    """Numeric part of a roster entry's roll number, used for ordering."""
    local = _local_part(email or '')
    match = _STUDENT_LOCAL_PART.search(local)
    digits = match.group(1) if match else re.sub(r'[^0-9]', '', local)
    return int(digits) if digits else 0


def roster_roll_number(email, prefix=None):
    """Roll number shown on a subject roster; non-student emails use their digits."""
    local = _local_part(email or '')
    match = _STUDENT_LOCAL_PART.search(local)
    digits = match.group(1) if match else (re.sub(r'[^0-9]', '', local) or '0')
    return f"{prefix or Config.ROLL_NUMBER_PREFIX}{digits.zfill(3)}"
