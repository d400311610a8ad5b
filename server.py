# =================================================================
#   CollegeConnect Attendance Server
# =================================================================

import atexit
import datetime
import logging
import time
from collections import namedtuple
from contextlib import closing
from functools import wraps
from logging.handlers import RotatingFileHandler

import jwt
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

import analytics
import attendance_store as store
from attendance_service import upsert_session
from config import Config
from database_setup import connect, create_schema
from errors import AttendanceError
from identity import resolve_admin, resolve_staff_or_admin, resolve_user, user_to_dict, get_user
from notifier import RealtimeNotifier, register_socket_handlers
from week_generator import generate_week


# --- Configure logging with rotation ---
log_file_handler = RotatingFileHandler(
    'collegeconnect_server.log',
    maxBytes=10 * 1024 * 1024,  # 10 MB per file
    backupCount=5,
    encoding='utf-8'
)
log_file_handler.setLevel(logging.INFO)
log_file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        log_file_handler,
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Only warnings and errors from the framework loggers
logging.getLogger('werkzeug').setLevel(logging.WARNING)
logging.getLogger('apscheduler').setLevel(logging.WARNING)
logging.getLogger('socketio').setLevel(logging.WARNING)
logging.getLogger('engineio').setLevel(logging.WARNING)


# --- App Initialization ---
app = Flask(__name__)
app.config['SECRET_KEY'] = Config.SECRET_KEY
app.config['DEBUG'] = Config.DEBUG
app.config['DATABASE_PATH'] = Config.DATABASE_PATH
app.config['AUTH_DEMO_MODE'] = Config.AUTH_DEMO_MODE

_origins = '*' if Config.CORS_ORIGINS == ['*'] else Config.CORS_ORIGINS

CORS(app, resources={r"/api/*": {"origins": _origins}}, supports_credentials=True)

# --- Rate Limiting ---
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=[Config.RATE_LIMIT_API],
    storage_uri="memory://"
)

# --- Realtime transport ---
socketio = SocketIO(app, cors_allowed_origins=_origins, async_mode='threading')
register_socket_handlers(socketio)
notifier = RealtimeNotifier(socketio)


@app.after_request
def add_security_headers(response):
    """Add security headers to every response."""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    if not Config.DEBUG:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    return response


# --- Request/Response Logging Middleware ---
SKIP_LOG_PATHS = ('/api/health',)


@app.before_request
def log_request_info():
    if request.path in SKIP_LOG_PATHS:
        return
    request._start_time = time.time()
    logger.info(f"[REQUEST] {request.method} {request.path} - Client: {request.remote_addr}")


@app.after_request
def log_response_info(response):
    if request.path in SKIP_LOG_PATHS:
        return response
    duration = 0
    if hasattr(request, '_start_time'):
        duration = (time.time() - request._start_time) * 1000  # ms
    # Only non-200 responses or slow requests (>500ms)
    if response.status_code != 200 or duration > 500:
        logger.info(f"[RESPONSE] {request.method} {request.path} - Status: {response.status_code} - {duration:.0f}ms")
    return response


# --- Database & Identity Helpers ---

def get_db_connection():
    """Opens a connection to the SQLite database configured for this app."""
    return connect(app.config['DATABASE_PATH'])


def init_database():
    with closing(get_db_connection()) as conn:
        create_schema(conn)


Identity = namedtuple('Identity', 'uid email role')


def _request_email():
    body = request.get_json(silent=True)
    return (request.headers.get('X-User-Email')
            or request.args.get('email')
            or (body.get('email') if isinstance(body, dict) else None))


def identity_required(f):
    """
    Resolves the caller's (uid, email, role claim) and passes it to the route.

    A signed JWT (HS256, SECRET_KEY) supplies `sub`, `email` and `role`.
    In demo mode an unsigned bearer value becomes the uid and the email is
    taken from the X-User-Email header, the query string or the body.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        demo = app.config['AUTH_DEMO_MODE']
        header = request.headers.get('Authorization', '')
        token = header[7:].strip() if header.startswith('Bearer ') else header.strip()

        if not token and not demo:
            return jsonify({'error': 'Authorization Token is missing!'}), 401

        uid, email, role = None, None, None
        if token:
            try:
                data = jwt.decode(token, app.config['SECRET_KEY'], algorithms=["HS256"])
                uid = data.get('sub') or data.get('uid')
                email = data.get('email')
                role = data.get('role')
            except jwt.ExpiredSignatureError:
                return jsonify({'error': 'Token has expired!'}), 401
            except jwt.InvalidTokenError:
                if not demo:
                    return jsonify({'error': 'Token is invalid!'}), 401
                uid = token[:36] if len(token) > 10 else 'demo-user-id'
        else:
            uid = 'demo-user-id'

        if demo and not email:
            email = _request_email()

        return f(Identity(uid, email, role), *args, **kwargs)
    return decorated


def error_response(error):
    return jsonify({'error': error.message}), error.status_code


# =================================================================
#   Health
# =================================================================

@app.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    status = {
        "status": "healthy",
        "environment": "production" if not Config.DEBUG else "development",
        "database": "unknown"
    }
    try:
        with closing(get_db_connection()) as conn:
            conn.execute("SELECT 1").fetchone()
        status["database"] = "connected"
    except Exception as e:
        status["status"] = "degraded"
        status["database"] = f"error: {str(e)}"
        logger.error(f"Health check - Database error: {e}")

    http_code = 200 if status["status"] == "healthy" else 503
    return jsonify(status), http_code


# =================================================================
#   AUTH
# =================================================================

@app.route('/api/auth/me', methods=['GET'])
@identity_required
def auth_me(identity):
    try:
        with closing(get_db_connection()) as conn:
            user = resolve_user(conn, identity.uid, identity.email, identity.role)
        return jsonify({'user': user_to_dict(user)})
    except Exception as e:
        logger.error(f"Error resolving current user: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to resolve user'}), 500


# =================================================================
#   ATTENDANCE: STAFF / ADMIN WRITES
# =================================================================

@app.route('/api/attendance/generate-week', methods=['POST'])
@identity_required
def generate_week_route(identity):
    """Regenerate the current week's (Mon-Sat) sessions and entries for all students."""
    try:
        with closing(get_db_connection()) as conn:
            user = resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role)
            logger.info(f"[WEEK] Generation requested by {user['email']}")
            result = generate_week(conn)
        return jsonify({'ok': True, **result})
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error generating week timetable/attendance: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to generate week attendance'}), 500


@app.route('/api/attendance/session', methods=['POST'])
@identity_required
def post_session_attendance(identity):
    """Replace all entries of a session; creates the session when no sessionId is given."""
    try:
        with closing(get_db_connection()) as conn:
            resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role,
                                   message='Unauthorized. Only staff/admin can post attendance.')
            session_id, events = upsert_session(conn, request.get_json(silent=True))
        notifier.publish(events)
        return jsonify({'ok': True, 'sessionId': session_id})
    except AttendanceError as e:
        logger.warning(f"[UPSERT] Rejected: {e.message}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Error posting attendance: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to post attendance'}), 500


# =================================================================
#   ATTENDANCE: READS
# =================================================================

@app.route('/api/attendance/staff/timetable', methods=['GET'])
@identity_required
def staff_timetable(identity):
    try:
        with closing(get_db_connection()) as conn:
            user = resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role)
            result = analytics.staff_timetable(
                conn, user,
                start_date=request.args.get('startDate'),
                end_date=request.args.get('endDate')
            )
        return jsonify(result)
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching staff timetable: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to load timetable'}), 500


@app.route('/api/attendance/student/<student_id>/entries', methods=['GET'])
@identity_required
def student_entries(identity, student_id):
    """Students read only their own entries; staff and admins read anyone's."""
    try:
        with closing(get_db_connection()) as conn:
            user = resolve_user(conn, identity.uid, identity.email, provision=False)
            if user is None:
                return jsonify({'error': 'User not found'}), 401

            target_id = student_id
            if user['role'] == 'student' and user['id'] != student_id:
                if identity.email:
                    target_id = user['id']
                elif get_user(conn, student_id) is None:
                    return jsonify({'error': 'Student not found'}), 404
                else:
                    return jsonify({'error': 'Unauthorized'}), 403

            entries = analytics.student_entries(conn, target_id)
        return jsonify({'entries': entries})
    except Exception as e:
        logger.error(f"Error fetching student attendance entries: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch attendance entries'}), 500


@app.route('/api/attendance/student/<student_id>/summary', methods=['GET'])
@identity_required
def student_summary(identity, student_id):
    try:
        with closing(get_db_connection()) as conn:
            summary = analytics.student_summary(conn, student_id)
        return jsonify(summary)
    except Exception as e:
        logger.error(f"Error computing attendance summary for {student_id}: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to compute summary'}), 500


@app.route('/api/attendance/sessions', methods=['GET'])
@identity_required
def search_sessions(identity):
    subject_ref = request.args.get('subjectId')
    if not subject_ref:
        return jsonify({'error': 'subjectId is required'}), 400
    try:
        with closing(get_db_connection()) as conn:
            sessions = analytics.search_sessions(conn, subject_ref, request.args.get('date'))
        return jsonify({'sessions': sessions})
    except Exception as e:
        logger.error(f"Error fetching attendance sessions: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch attendance sessions'}), 500


@app.route('/api/attendance/session/<session_id>/entries', methods=['GET'])
@identity_required
def session_entries(identity, session_id):
    try:
        with closing(get_db_connection()) as conn:
            resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role, message='Unauthorized')
            entries = analytics.session_entries(conn, session_id)
        return jsonify({'entries': entries})
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching session entries: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch session entries'}), 500


@app.route('/api/attendance/subject/<subject_id>/students', methods=['GET'])
@identity_required
def subject_students(identity, subject_id):
    try:
        with closing(get_db_connection()) as conn:
            resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role, message='Unauthorized')
            students = analytics.subject_roster(conn, subject_id)
        return jsonify({'students': students})
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching enrolled students: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch students'}), 500


@app.route('/api/attendance/student-by-roll/<roll_no>', methods=['GET'])
@identity_required
def student_by_roll(identity, roll_no):
    try:
        with closing(get_db_connection()) as conn:
            resolve_staff_or_admin(conn, identity.uid, identity.email, identity.role)
            if not roll_no.strip():
                return jsonify({'error': 'rollNo parameter is required'}), 400
            student = analytics.find_student_by_roll(conn, roll_no)
            if student is None:
                return jsonify({'error': 'Student not found for provided roll number'}), 404
            result = analytics.student_by_roll(conn, student)
        return jsonify(result)
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching attendance by roll number: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to load attendance'}), 500


@app.route('/api/attendance/overview', methods=['GET'])
@identity_required
def attendance_overview(identity):
    try:
        with closing(get_db_connection()) as conn:
            resolve_admin(conn, identity.uid, identity.email, identity.role)
            entries = analytics.overview(conn, request.args.get('rollNo'), request.args.get('limit'))
        return jsonify({'entries': entries})
    except AttendanceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching attendance overview: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch attendance overview'}), 500


# =================================================================
#   SUBJECTS
# =================================================================

@app.route('/api/subjects', methods=['GET'])
@identity_required
def list_subjects(identity):
    try:
        with closing(get_db_connection()) as conn:
            subjects = [store.subject_to_dict(s) for s in store.get_subjects(conn)]
        return jsonify({'subjects': subjects})
    except Exception as e:
        logger.error(f"Error fetching subjects: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch subjects'}), 500


@app.route('/api/subjects/code/<code>', methods=['GET'])
@identity_required
def subject_by_code(identity, code):
    with closing(get_db_connection()) as conn:
        subject = store.get_subject_by_code(conn, code)
    if subject is None:
        return jsonify({'error': 'Subject not found'}), 404
    return jsonify({'subject': store.subject_to_dict(subject)})


@app.route('/api/subjects/<subject_id>', methods=['GET'])
@identity_required
def subject_by_id(identity, subject_id):
    with closing(get_db_connection()) as conn:
        subject = store.get_subject(conn, subject_id)
    if subject is None:
        return jsonify({'error': 'Subject not found'}), 404
    return jsonify({'subject': store.subject_to_dict(subject)})


@app.route('/api/subjects/staff/assigned/current', methods=['GET'])
@identity_required
def staff_assigned_subjects(identity):
    """The caller's subjects (specials included) with attendance statistics."""
    try:
        with closing(get_db_connection()) as conn:
            staff = resolve_user(conn, identity.uid, identity.email, identity.role, provision=False)
            if staff is None or staff['role'] != 'staff':
                return jsonify({'error': 'Only staff can access this'}), 403
            subjects = analytics.assigned_subjects(conn, staff)
        return jsonify({'subjects': subjects})
    except Exception as e:
        logger.error(f"Error fetching staff assigned subjects: {e}", exc_info=True)
        return jsonify({'error': str(e) or 'Failed to fetch assigned subjects'}), 500


# =================================================================
#   SCHEDULED WEEKLY GENERATION
# =================================================================

def scheduled_week_generation():
    """Background job: regenerate the current week's timetable."""
    try:
        with closing(get_db_connection()) as conn:
            result = generate_week(conn, today=datetime.date.today())
        logger.info(f"[WEEK] Scheduled generation done: {result['sessions']} sessions, {result['entries']} entries")
    except Exception as e:
        logger.error(f"Error in scheduled_week_generation: {e}", exc_info=True)


scheduler = None
if Config.ENABLE_WEEKLY_GENERATION:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        func=scheduled_week_generation,
        trigger="cron",
        day_of_week=Config.WEEKLY_GENERATION_DAY,
        hour=Config.WEEKLY_GENERATION_HOUR,
        id='weekly_timetable_generation',
        name='Regenerate weekly timetable and attendance',
        replace_existing=True
    )
    scheduler.start()
    logger.info(f"Weekly generation scheduled - {Config.WEEKLY_GENERATION_DAY} {Config.WEEKLY_GENERATION_HOUR:02d}:00")
    atexit.register(lambda: scheduler.shutdown())


# =================================================================
#   Server Startup
# =================================================================

if __name__ == '__main__':
    init_database()
    socketio.run(app, host=Config.HOST, port=Config.PORT, debug=False,
                 use_reloader=False, allow_unsafe_werkzeug=True)
