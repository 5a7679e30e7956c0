"""
Discctl Web Routes
"""

import re
import uuid
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request
from . import activity
from . import config
from . import drives
from . import ripper
from .error_detection import DriveBusyError, DriveTableError, RipError

main = Blueprint('main', __name__)

NUMBER = re.compile(r'[0-9]+')
DEFAULT_SPEED = 4


def _settings() -> dict:
    """Config the app was created with, or a fresh load"""
    cfg = current_app.config.get('DISCCTL')
    return cfg if cfg is not None else config.load_config()


def _ok(**payload):
    return jsonify({'error': 'false', **payload}), 200


def _fail(status: int, message: str, error: RipError = None, **extra):
    body = {'error': 'true', 'message': message, **extra}
    if error:
        body['details'] = error.details
        body['errorInfo'] = error.to_dict()
    return jsonify(body), status


def _busy(e: DriveBusyError):
    activity.log_warning(f"Rejected request: {e}")
    return _fail(409, str(e))


def _safe_name(value: str) -> bool:
    """Relative path inside the output root, no parent references"""
    if not value or value.startswith('/'):
        return False
    return '..' not in Path(value).parts


def _speed_arg():
    """Parsed ?speed=, None when absent, False when malformed"""
    speed = request.args.get('speed')
    if speed is None or speed == '':
        return None
    if not NUMBER.fullmatch(speed):
        return False
    return int(speed)


@main.route('/drives/list')
def drives_list():
    """Current drive catalog"""
    catalog = drives.get_catalog()
    return _ok(drives={name: rec.to_dict() for name, rec in catalog.items()})


@main.route('/drives/update', methods=['POST'])
def drives_update():
    """Rebuild the drive catalog"""
    try:
        catalog = drives.refresh_catalog(_settings())
    except (DriveTableError, OSError) as e:
        activity.log_error(f"Drive list refresh failed: {e}")
        return _fail(500, 'Unable to refresh drive list', details=str(e))
    return _ok(drives={name: rec.to_dict() for name, rec in catalog.items()})


@main.route('/drives/<path:device>/info')
def drive_info(device):
    """Catalog record for one drive"""
    record = drives.get_catalog().get(drives.device_name(device))
    if record is None:
        return _fail(404, f"Unknown drive {drives.device_name(device)}")
    return _ok(drive=record.to_dict())


@main.route('/drives/<path:device>/discid')
def drive_discid(device):
    """Identify the disc in a drive"""
    engine = ripper.get_engine()
    if not engine:
        return _fail(500, 'Rip engine not initialized')

    try:
        with drives.device_locks.hold(device) as path:
            identity, error = engine.identifier.identify(path)
    except DriveBusyError as e:
        return _busy(e)

    if error:
        return _fail(500, error.message, error)
    if identity is None:
        return _fail(404, f"No disc found in {drives.device_path(device)}")

    payload = identity.to_dict()
    if request.args.get('releases') in ('1', 'true', 'yes'):
        payload['releases'] = engine.identifier.fetch_releases(identity.musicbrainz_id)
    return _ok(**payload)


@main.route('/drives/<path:device>/rip/track', methods=['POST'], defaults={'track': ''})
@main.route('/drives/<path:device>/rip/track/<track>', methods=['POST'])
def drive_rip_track(device, track):
    """Rip a single track"""
    if not NUMBER.fullmatch(track or ''):
        return _fail(400, 'Track must be a non-negative integer')
    speed = _speed_arg()
    if speed is False:
        return _fail(400, 'Speed must be a non-negative integer')

    name = drives.device_name(device)
    output_dir = request.args.get('outputDir') or name
    filename = request.args.get('filename') or track
    if not _safe_name(output_dir):
        return _fail(400, 'outputDir must be a relative path inside the output directory')
    if not _safe_name(filename) or '/' in filename:
        return _fail(400, 'filename must be a plain file name')

    engine = ripper.get_engine()
    if not engine:
        return _fail(500, 'Rip engine not initialized')

    cfg = _settings()
    if speed is None:
        speed = cfg.get('ripping', {}).get('default_speed', DEFAULT_SPEED)
    output_path = config.output_root(cfg) / output_dir

    try:
        with drives.device_locks.hold(device) as path:
            rip, error = engine.rip_track(path, int(track), speed, output_path, filename)
    except DriveBusyError as e:
        return _busy(e)

    if error:
        return _fail(500, error.message, error)
    return _ok(**rip.to_dict())


@main.route('/drives/<path:device>/rip/cd', methods=['POST'])
def drive_rip_cd(device):
    """Rip every track on the disc"""
    speed = _speed_arg()
    if speed is False:
        return _fail(400, 'Speed must be a non-negative integer')

    name = drives.device_name(device)
    output_dir = request.args.get('outputDir') or f"{name}--{uuid.uuid4().hex[:8]}"
    if not _safe_name(output_dir):
        return _fail(400, 'outputDir must be a relative path inside the output directory')

    engine = ripper.get_engine()
    if not engine:
        return _fail(500, 'Rip engine not initialized')

    cfg = _settings()
    if speed is None:
        speed = cfg.get('ripping', {}).get('default_speed', DEFAULT_SPEED)
    output_path = config.output_root(cfg) / output_dir

    try:
        with drives.device_locks.hold(device) as path:
            rip, error = engine.rip_disc(path, speed, output_path)
    except DriveBusyError as e:
        return _busy(e)

    if error:
        return _fail(500, error.message, error, outputDir=str(output_path))
    return _ok(**rip.to_dict())


@main.route('/drives/<path:device>/eject', methods=['POST'])
def drive_eject(device):
    """Open the drive tray"""
    engine = ripper.get_engine()
    if not engine:
        return _fail(500, 'Rip engine not initialized')

    try:
        with drives.device_locks.hold(device) as path:
            error = engine.eject(path)
    except DriveBusyError as e:
        return _busy(e)

    if error:
        return _fail(500, error.message, error)
    return _ok(message=f"Ejected {drives.device_name(device)}")


@main.route('/drives/<path:device>/analyze', methods=['POST'])
def drive_analyze(device):
    """Run the drive self-test"""
    speed = _speed_arg()
    if speed is False:
        return _fail(400, 'Speed must be a non-negative integer')

    engine = ripper.get_engine()
    if not engine:
        return _fail(500, 'Rip engine not initialized')

    name = drives.device_name(device)
    log_path = config.output_root(_settings()) / f"{name}-drive-analysis.log"

    try:
        with drives.device_locks.hold(device) as path:
            analysis, error = engine.analyze_drive(path, log_path, speed)
    except DriveBusyError as e:
        return _busy(e)

    if error:
        extra = analysis.to_dict() if analysis else {}
        return _fail(500, error.message, error, **extra)
    return _ok(message=ripper.ANALYSIS_OK, logPath=analysis.log_path)


@main.route('/activity-log')
def activity_log():
    """Recent activity log entries (newest first)"""
    lines = request.args.get('lines', '100')
    if not NUMBER.fullmatch(lines):
        return _fail(400, 'lines must be a non-negative integer')
    return _ok(log=activity.read_log(int(lines)))
