# =================================================================
#   CollegeConnect - Identity Resolver
#   Maps an authenticated principal (uid + optional email) to a
#   users row, auto-provisioning unknown emails on first sight.
# =================================================================

import logging
import uuid

from config import Config
from errors import PermissionDenied

logger = logging.getLogger(__name__)

ROLES = ('student', 'staff', 'admin')
STAFF_ROLES = ('staff', 'admin')


def user_to_dict(row):
    if row is None:
        return None
    return {
        'id': row['id'],
        'email': row['email'],
        'name': row['name'],
        'role': row['role'],
    }


def infer_role(email):
    """staff*/admin* local parts map to staff/admin; everything else is a student."""
    local = email.lower().split('@')[0]
    if local.startswith('admin'):
        return 'admin'
    if local.startswith('staff'):
        return 'staff'
    return 'student'


def _role_for_new_user(email, role_claim):
    if role_claim in ROLES:
        return role_claim
    if Config.INFER_ROLE_FROM_EMAIL:
        return infer_role(email)
    return 'student'


def get_user(conn, user_id):
    return conn.execute(
        "SELECT id, email, name, role FROM users WHERE id = ?", (user_id,)
    ).fetchone()


def get_user_by_email(conn, email):
    return conn.execute(
        "SELECT id, email, name, role FROM users WHERE email = ?", (email,)
    ).fetchone()


def resolve_user(conn, uid, email=None, role_claim=None, provision=True):
    """
    Resolve the caller to a users row.

    With an email the row is looked up by email and, when `provision` is
    set, created when missing (id = uid, name = email local part, role from
    the token's role claim or the email prefix). Otherwise the uid is used
    as the primary key. Returns None when nothing matches.
    """
    if email:
        user = get_user_by_email(conn, email)
        if user is None and not provision:
            return get_user(conn, uid) if uid else None
        if user is None:
            role = _role_for_new_user(email, role_claim)
            user_id = uid or str(uuid.uuid4())
            if get_user(conn, user_id) is not None:
                # uid already belongs to another email; keep both principals apart
                user_id = str(uuid.uuid4())
            with conn:
                conn.execute(
                    "INSERT INTO users (id, email, name, role) VALUES (?, ?, ?, ?)",
                    (user_id, email, email.lower().split('@')[0], role)
                )
            logger.info(f"[AUTH] Auto-provisioned user {email} as {role}")
            user = get_user(conn, user_id)
        return user
    if not uid:
        return None
    return get_user(conn, uid)


def resolve_staff_or_admin(conn, uid, email=None, role_claim=None,
                           message='Unauthorized. Staff or admin access required.'):
    user = resolve_user(conn, uid, email, role_claim)
    if user is None or user['role'] not in STAFF_ROLES:
        raise PermissionDenied(message)
    return user


def resolve_admin(conn, uid, email=None, role_claim=None,
                  message='Unauthorized. Admin access required.'):
    user = resolve_staff_or_admin(conn, uid, email, role_claim, message=message)
    if user['role'] != 'admin':
        raise PermissionDenied(message)
    return user
