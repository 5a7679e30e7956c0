#!/usr/bin/env python3
"""
Discctl - Optical Drive Control Service
"""

import sys
from flask import Flask
from discctl.routes import main
from discctl import config
from discctl import drives
from discctl import ripper
from discctl import activity
from discctl.error_detection import DriveTableError


def create_app(cfg: dict = None):
    app = Flask(__name__)

    # Routes read settings from here; None means load per request
    app.config['DISCCTL'] = cfg

    # Register blueprints
    app.register_blueprint(main)

    return app


if __name__ == '__main__':
    cfg = config.load_config()
    activity.set_level(config.log_level(cfg))

    device = config.default_device(cfg)
    if not config.check_device_access(device):
        activity.log_error(f"No read/write access to {device}, refusing to start")
        print(f"  ERROR: no read/write access to {device}")
        sys.exit(1)

    config.tmp_dir(cfg).mkdir(parents=True, exist_ok=True)
    config.output_root(cfg).mkdir(parents=True, exist_ok=True)

    # Initialize the rip engine
    ripper.init_engine(cfg)
    print("  Rip engine initialized")

    try:
        catalog = drives.refresh_catalog(cfg)
        print(f"  Found {len(catalog)} drive(s): {', '.join(catalog) or 'none'}")
    except (DriveTableError, OSError) as e:
        # Keep serving; POST /drives/update retries the scan
        activity.log_error(f"Initial drive scan failed: {e}")
        print(f"  Initial drive scan failed: {e}")

    activity.service_started()
    app = create_app(cfg)

    host = cfg.get('discctl', {}).get('host', '0.0.0.0')
    port = cfg.get('discctl', {}).get('port', 8082)

    print(f"""
    Discctl - Optical Drive Control Service
    Default drive: {device}
    Output: {config.output_root(cfg)}

    Starting server on http://{host}:{port}
    """)

    # Threaded so requests against different drives run in parallel
    try:
        app.run(host=host, port=port, debug=False, threaded=True)
    finally:
        activity.service_stopped()
