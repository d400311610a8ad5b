# =================================================================
#   CollegeConnect - Realtime Notifier
#   Attendance writes produce domain events; the notifier delivers
#   them to Socket.IO rooms student:<id> and subject:<id>.
#   Delivery is best effort: no transport, no retry, no ack.
# =================================================================

import logging
from collections import namedtuple

from flask import request
from flask_socketio import join_room

logger = logging.getLogger(__name__)


class AttendanceUpdated(namedtuple('AttendanceUpdated',
                                   'session_id student_id present subject_id date period')):
    """One student's entry in a session was (re)written."""
    event_name = 'attendance:updated'

    @property
    def room(self):
        return f"student:{self.student_id}"

    def payload(self):
        return {
            'sessionId': self.session_id,
            'studentId': self.student_id,
            'present': self.present,
            'subjectId': self.subject_id,
            'date': self.date,
            'period': self.period,
        }


class SessionUpdated(namedtuple('SessionUpdated', 'session_id subject_id date period')):
    """A session's entries were replaced."""
    event_name = 'attendance:session:updated'

    @property
    def room(self):
        return f"subject:{self.subject_id}"

    def payload(self):
        return {
            'sessionId': self.session_id,
            'subjectId': self.subject_id,
            'date': self.date,
            'period': self.period,
        }


class RealtimeNotifier:
    """Fans domain events out over a Flask-SocketIO server."""

    def __init__(self, socketio=None):
        self.socketio = socketio

    def publish(self, events):
        """Emit each event to its room; returns how many were handed to the transport."""
        if self.socketio is None:
            return 0
        delivered = 0
        for event in events:
            if isinstance(event, SessionUpdated) and not event.subject_id:
                continue
            try:
                self.socketio.emit(event.event_name, event.payload(), to=event.room)
                delivered += 1
            except Exception as e:
                logger.warning(f"[REALTIME] Could not emit {event.event_name} to {event.room}: {e}")
        return delivered


def register_socket_handlers(socketio):
    @socketio.on('connect')
    def on_connect(auth=None):
        logger.info(f"[REALTIME] Client connected: {request.sid}")

    @socketio.on('attendance:join')
    def on_attendance_join(data):
        data = data or {}
        rooms = []
        if data.get('studentId'):
            rooms.append(f"student:{data['studentId']}")
        if data.get('subjectId'):
            rooms.append(f"subject:{data['subjectId']}")
        for room in rooms:
            join_room(room)
        return {'joined': rooms}

    @socketio.on('disconnect')
    def on_disconnect(*args):
        logger.info(f"[REALTIME] Client disconnected: {request.sid}")
