"""
Smart Class QR Scheduler - Main Application

This module is the entry point for the classroom QR access service. It builds
the Flask application, wires the database, QR generator, notification system
and class scheduler together, and owns the scheduler's lifecycle: the loop is
started when the application is created and stopped at interpreter exit.

Features:
- Upcoming-class QR notification loop
- Manual tick trigger and scheduler status API
- On-demand QR issuance and delivery for one class
- Issued credential listing and door-side validation
- Live classroom occupancy for the door display
"""

import atexit
import logging
from dataclasses import asdict
from datetime import datetime, timedelta

from flask import Blueprint, Flask, current_app, jsonify, request

from config import init_config
from smartclass.modules.class_scheduler import ClassScheduler
from smartclass.modules.database_manager import DatabaseManager
from smartclass.modules.errors import DeliveryFailed, IssuanceFailed, SnapshotUnavailable
from smartclass.modules.models import DeliveryRequest
from smartclass.modules.notification_system import NotificationSystem
from smartclass.modules.qr_generator import QRGenerator
from smartclass.modules.schedule_manager import ScheduleManager
from smartclass.modules.window_matcher import current_occupancy

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

DELIVERY_FIELDS = ('schedule_id', 'recipient_email', 'recipient_name', 'subject',
                   'classroom_name', 'start_time', 'end_time', 'day')


def create_app(config_name=None, overrides=None, start_scheduler=None):
    """
    Build the application and its components.

    Args:
        config_name (str): development, testing or production
        overrides (dict): Configuration values applied on top of the config class
        start_scheduler (bool): Start the tick loop, defaults to SCHEDULER_ENABLED

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name, overrides)
    settings = app.config

    db_manager = DatabaseManager(settings['DATABASE_PATH'])
    qr_generator = QRGenerator(
        db_manager,
        validity=timedelta(hours=settings['QR_CODE_VALIDITY_HOURS']),
        image_settings={
            'box_size': settings['QR_CODE_BOX_SIZE'],
            'border': settings['QR_CODE_BORDER'],
            'fill_color': settings['QR_CODE_FILL_COLOR'],
            'back_color': settings['QR_CODE_BACK_COLOR']
        }
    )
    notification_system = NotificationSystem(
        qr_generator,
        email_config={
            'smtp_server': settings['MAIL_SERVER'],
            'smtp_port': settings['MAIL_PORT'],
            'username': settings['MAIL_USERNAME'] or '',
            'password': settings['MAIL_PASSWORD'] or '',
            'use_tls': settings['MAIL_USE_TLS'],
            'sender': settings['MAIL_DEFAULT_SENDER'],
            'timeout': settings['MAIL_TIMEOUT']
        },
        validity_hours=settings['QR_CODE_VALIDITY_HOURS'],
        suppress_send=settings['MAIL_SUPPRESS_SEND'],
        system_name=settings['SYSTEM_NAME']
    )
    scheduler = ClassScheduler(
        db_manager.get_snapshot,
        qr_generator,
        notification_system,
        lookahead=timedelta(minutes=settings['SCHEDULER_LOOKAHEAD_MINUTES']),
        tick_interval=settings['SCHEDULER_TICK_SECONDS'],
        suppress_duplicates=settings['SCHEDULER_SUPPRESS_DUPLICATES'],
        wrap_midnight=settings['SCHEDULER_WRAP_MIDNIGHT'],
        max_workers=settings['SCHEDULER_MAX_WORKERS'],
        history_size=settings['SCHEDULER_HISTORY_SIZE']
    )

    app.extensions['smartclass'] = {
        'db_manager': db_manager,
        'qr_generator': qr_generator,
        'notification_system': notification_system,
        'schedule_manager': ScheduleManager(db_manager),
        'scheduler': scheduler
    }
    app.register_blueprint(api)

    if start_scheduler is None:
        start_scheduler = settings['SCHEDULER_ENABLED']
    if start_scheduler:
        scheduler.start()
        atexit.register(scheduler.stop, settings['SCHEDULER_SHUTDOWN_TIMEOUT'])

    logger.info(f"Application created (scheduler {'started' if start_scheduler else 'disabled'})")
    return app


def _component(name):
    return current_app.extensions['smartclass'][name]


def _parse_now(value):
    """Parse an ISO timestamp as naive local time; offsets are converted."""
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)
    return moment


@api.route('/health')
def health():
    """Liveness check"""
    return jsonify({'status': 'ok', 'scheduler': _component('scheduler').state})


@api.route('/api/scheduler/status')
def scheduler_status():
    """Scheduler configuration, counters and recent ticks"""
    scheduler = _component('scheduler')
    limit = request.args.get('limit', default=10, type=int)
    status = scheduler.get_status()
    status['recent_ticks'] = [report.to_dict() for report in scheduler.recent_reports(limit)]
    return jsonify(status)


@api.route('/api/check-upcoming-classes', methods=['POST'])
def check_upcoming_classes():
    """Run one scheduler tick immediately"""
    data = request.get_json(silent=True) or {}
    now = None
    if data.get('now'):
        try:
            now = _parse_now(data['now'])
        except (TypeError, ValueError):
            return jsonify({'success': False, 'message': 'Invalid "now" timestamp'}), 400

    report = _component('scheduler').run_tick(now)
    status_code = 200 if report.status == 'completed' else 503
    return jsonify({
        'success': report.status == 'completed',
        'message': f"Processed {report.matched} upcoming classes",
        'report': report.to_dict()
    }), status_code


@api.route('/api/send-class-qr', methods=['POST'])
def send_class_qr():
    """Issue a QR credential for one class and email it"""
    data = request.get_json(silent=True) or {}
    missing = [name for name in DELIVERY_FIELDS if not data.get(name)]
    if missing:
        return jsonify({
            'success': False,
            'message': f"Missing required fields: {', '.join(missing)}"
        }), 400

    delivery = DeliveryRequest(**{name: str(data[name]) for name in DELIVERY_FIELDS})

    try:
        credential = _component('qr_generator').issue_credential(delivery.schedule_id)
    except IssuanceFailed as e:
        return jsonify({'success': False, 'message': str(e)}), 500

    try:
        _component('notification_system').send_class_qr(credential, delivery)
    except DeliveryFailed as e:
        return jsonify({
            'success': False,
            'qr_code_id': credential.id,
            'message': str(e)
        }), 502

    return jsonify({
        'success': True,
        'qr_code_id': credential.id,
        'expires_at': credential.expires_at.isoformat(),
        'message': 'QR code generated and sent successfully'
    })


@api.route('/api/credentials')
def list_credentials():
    """Issued credentials, newest first, filtered by schedule and status"""
    schedule_id = request.args.get('schedule_id')
    status = request.args.get('status', 'all')
    limit = request.args.get('limit', default=100, type=int)

    if status not in ('all', 'active', 'used', 'expired'):
        return jsonify({'success': False, 'message': f"Unknown status filter: {status}"}), 400

    db_manager = _component('db_manager')
    try:
        snapshot = db_manager.get_snapshot()
    except SnapshotUnavailable as e:
        return jsonify({'success': False, 'message': str(e)}), 503

    schedules = {schedule.id: schedule for schedule in snapshot.schedules}
    now = datetime.now()
    credentials = []
    for credential in db_manager.list_credentials(schedule_id, limit):
        if credential.used:
            credential_status = 'used'
        elif credential.is_expired(now):
            credential_status = 'expired'
        else:
            credential_status = 'active'

        if status in ('all', credential_status):
            entry = credential.to_dict()
            entry['status'] = credential_status
            entry.update(_schedule_context(schedules.get(credential.schedule_id), snapshot))
            credentials.append(entry)

    return jsonify({'success': True, 'credentials': credentials})


def _schedule_context(schedule, snapshot):
    """Schedule, professor and classroom of a credential; None where deleted"""
    if schedule is None:
        return {'schedule': None, 'professor': None, 'classroom': None}

    professor = snapshot.professor(schedule.professor_id)
    classroom = snapshot.classroom(schedule.classroom_id)
    return {
        'schedule': asdict(schedule),
        'professor': asdict(professor) if professor else None,
        'classroom': asdict(classroom) if classroom else None
    }


@api.route('/api/classrooms/status')
def classroom_status():
    """Occupancy of every classroom, now or at an ISO "now" query parameter"""
    now = datetime.now()
    if request.args.get('now'):
        try:
            now = _parse_now(request.args['now'])
        except ValueError:
            return jsonify({'success': False, 'message': 'Invalid "now" timestamp'}), 400

    try:
        snapshot = _component('db_manager').get_snapshot(taken_at=now)
    except SnapshotUnavailable as e:
        return jsonify({'success': False, 'message': str(e)}), 503

    statuses = [status.to_dict() for status in current_occupancy(now, snapshot)]
    return jsonify({
        'success': True,
        'timestamp': now.isoformat(),
        'occupied': sum(1 for status in statuses if status['status'] == 'occupied'),
        'classrooms': statuses
    })


@api.route('/api/credentials/validate', methods=['POST'])
def validate_credential():
    """Check a scanned QR payload, optionally consuming it"""
    data = request.get_json(silent=True) or {}
    payload = (data.get('payload') or '').strip()
    if not payload:
        return jsonify({'valid': False, 'error': 'No QR code data provided'}), 400

    qr_generator = _component('qr_generator')
    if data.get('consume'):
        result = qr_generator.consume_credential(payload)
    else:
        result = qr_generator.validate_credential(payload)

    response = {key: value for key, value in result.items() if key != 'credential'}
    if 'credential' in result:
        response['credential'] = result['credential'].to_dict()
    return jsonify(response), 200 if result['valid'] else 409


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    )

    # The reloader would start a second scheduler in the child process
    application = create_app()
    application.run(debug=application.config['DEBUG'], host='0.0.0.0', port=5000, use_reloader=False)
