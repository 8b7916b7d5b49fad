# facelog/web/server.py
"""
Read-only web dashboard API to check attendance remotely over WiFi.
Access: http://<IP_Pi>:5000/api/status

Routes:
    GET /api/status                          camera + last recognition/outcome
    GET /api/attendance/today                today's events
    GET /api/attendance?date=YYYY-MM-DD      events of one day
    GET /api/summary/<person_id>?start=&end= per-person summary
    GET /api/export.csv?start=&end=&activity= CSV download
"""
import os
import socket
import logging
import tempfile
from datetime import date, datetime

from flask import Blueprint, Flask, jsonify, request, send_file

from ..errors import StorageError

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint('dashboard', __name__)

# Global references - set from main.py
_store = None
_source = None
_pipeline = None


def init_dashboard(store, source=None, pipeline=None):
    """Wire the dashboard to the running store, camera and pipeline."""
    global _store, _source, _pipeline
    _store = store
    _source = source
    _pipeline = pipeline
    logger.info("[Web] Dashboard initialized")


class InvalidDateArgument(ValueError):
    pass


def _parse_date_arg(name: str, default: date) -> date:
    value = request.args.get(name)
    if not value:
        return default
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidDateArgument(f"Invalid {name} date '{value}', expected YYYY-MM-DD") from None


def _require_store():
    if _store is None:
        raise StorageError("Attendance store is not initialized")
    return _store


def _event_to_dict(event, names):
    return {
        'id': event.id,
        'person_id': event.person_id,
        'name': names.get(event.person_id, "Unknown"),
        'timestamp': event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        'time': event.timestamp.strftime("%H:%M:%S"),
        'event_type': event.event_type.value,
        'activity': event.activity,
        'confidence': round(event.confidence, 2),
        'source_id': event.source_id,
    }


def _events_response(events):
    names = {person.id: person.display_name for person in _require_store().list_persons()}
    return jsonify([_event_to_dict(event, names) for event in events])


@dashboard_bp.errorhandler(StorageError)
def handle_storage_error(error):
    logger.error(f"[Web] Storage error: {error}")
    return jsonify({'error': str(error)}), 500


@dashboard_bp.errorhandler(InvalidDateArgument)
def handle_bad_request(error):
    return jsonify({'error': str(error)}), 400


@dashboard_bp.route('/api/status')
def api_status():
    """Camera status and the latest recognition/attendance outcome."""
    camera = None
    if _source is not None:
        camera = {
            'status': _source.status.value,
            'fps': round(_source.fps, 1),
            'running': _source.is_running(),
            'paused': _source.is_paused(),
            'last_error': _source.last_error,
        }

    last_result = None
    last_outcome = None
    if _pipeline is not None:
        result = _pipeline.last_result
        if result is not None:
            last_result = {
                'status': result.status.value,
                'person_id': result.person_id,
                'name': result.display_name,
                'confidence': round(result.confidence, 2),
                'message': result.message,
            }
        outcome = _pipeline.last_outcome
        if outcome is not None:
            last_outcome = {
                'status': outcome.status.value,
                'person_id': outcome.person_id,
                'activity': outcome.activity,
                'message': outcome.message,
                'decided_at': outcome.decided_at.strftime("%Y-%m-%d %H:%M:%S"),
            }

    return jsonify({'camera': camera, 'last_result': last_result, 'last_outcome': last_outcome})


@dashboard_bp.route('/api/attendance/today')
def api_today():
    return _events_response(_require_store().events_for_day(date.today()))


@dashboard_bp.route('/api/attendance')
def api_attendance():
    day = _parse_date_arg('date', date.today())
    return _events_response(_require_store().events_for_day(day))


@dashboard_bp.route('/api/summary/<int:person_id>')
def api_summary(person_id):
    today = date.today()
    start = _parse_date_arg('start', today.replace(day=1))
    end = _parse_date_arg('end', today)
    store = _require_store()

    person = store.find_person(person_id)
    if person is None:
        return jsonify({'error': f'Person {person_id} not found'}), 404

    summary = store.summary_for_person(person_id, start, end)
    return jsonify({
        'person_id': person_id,
        'name': person.display_name,
        'start': start.isoformat(),
        'end': end.isoformat(),
        'total_days': summary.total_days,
        'time_in_count': summary.time_in_count,
        'time_out_count': summary.time_out_count,
    })


@dashboard_bp.route('/api/export.csv')
def api_export():
    """Export CSV and download it."""
    today = date.today()
    start = _parse_date_arg('start', today.replace(day=1))
    end = _parse_date_arg('end', today)
    activity = request.args.get('activity') or None

    filename = f"attendance_{start.isoformat()}_to_{end.isoformat()}.csv"
    filepath = _require_store().export_to_csv(
        os.path.join(tempfile.gettempdir(), filename), start, end, activity
    )
    return send_file(
        filepath,
        mimetype='text/csv',
        as_attachment=True,
        download_name=filename
    )


def create_app(store=None, source=None, pipeline=None) -> Flask:
    """Flask app with the dashboard blueprint registered."""
    if store is not None:
        init_dashboard(store, source, pipeline)
    app = Flask(__name__)
    app.register_blueprint(dashboard_bp)
    return app


def get_local_ip():
    """Local IP address of this machine."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def run_server(app: Flask, host='0.0.0.0', port=5000):
    """Run the web server (blocking)."""
    local_ip = get_local_ip()
    logger.info(f"🌐 Web dashboard running: http://{local_ip}:{port} (local: http://localhost:{port})")
    app.run(host=host, port=port, debug=False, threaded=True, use_reloader=False)
