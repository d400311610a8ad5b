# =================================================================
#   CollegeConnect - WSGI Entry Point
#   Used by production WSGI servers. Socket.IO runs in threading
#   mode, so use a single worker with threads:
#
#     gunicorn -w 1 --threads 100 -b 0.0.0.0:8080 wsgi:app
# =================================================================

from server import app, init_database, socketio

init_database()

if __name__ == '__main__':
    socketio.run(app)
