"""
Discctl Configuration Management
Handles loading settings, environment overrides, and device checks
"""

import os
import yaml
from pathlib import Path
from typing import List

CONFIG_DIR = Path(__file__).parent.parent / "config"
CONFIG_FILE = CONFIG_DIR / "settings.yaml"
DEFAULT_CONFIG = CONFIG_DIR / "default.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'CDROM_DEVICE': ('drive', 'device'),
    'EXCLUDED_DEVICES': ('drive', 'excluded'),
    'TMP_DIR': ('paths', 'tmp'),
    'OUTPUT_DIR': ('paths', 'output'),
    'LOG_LEVEL': ('logging', 'level'),
    'DISCCTL_HOST': ('discctl', 'host'),
    'DISCCTL_PORT': ('discctl', 'port'),
}


def load_config() -> dict:
    """Load configuration from file, or defaults if not exists, then apply environment"""
    cfg = {}
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            cfg = yaml.safe_load(f) or {}
    elif DEFAULT_CONFIG.exists():
        with open(DEFAULT_CONFIG) as f:
            cfg = yaml.safe_load(f) or {}
    return apply_env(cfg)


def apply_env(cfg: dict, environ=None) -> dict:
    """Overlay environment variables onto a loaded config"""
    environ = os.environ if environ is None else environ

    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == '':
            continue
        if var == 'EXCLUDED_DEVICES':
            value = [d.strip() for d in value.split(',') if d.strip()]
        elif var == 'DISCCTL_PORT':
            value = int(value)
        cfg.setdefault(section, {})[key] = value

    return cfg


def default_device(cfg: dict) -> str:
    return cfg.get('drive', {}).get('device', '/dev/sr0')


def excluded_devices(cfg: dict) -> List[str]:
    """Excluded devices as configured, either bare names or device paths"""
    excluded = cfg.get('drive', {}).get('excluded') or []
    if isinstance(excluded, str):
        excluded = excluded.split(',')
    return [d.strip() for d in excluded if d and d.strip()]


def output_root(cfg: dict) -> Path:
    return Path(cfg.get('paths', {}).get('output', '/tmp/discctl/output'))


def tmp_dir(cfg: dict) -> Path:
    return Path(cfg.get('paths', {}).get('tmp', '/tmp/discctl/tmp'))


def log_level(cfg: dict) -> str:
    return cfg.get('logging', {}).get('level', 'info')


def check_device_access(device: str) -> bool:
    """True if the device node exists and is readable and writable.

    Accepts a bare name ('sr0') or a device path ('/dev/sr0').
    """
    from .drives import device_path
    path = device_path(device)
    return os.path.exists(path) and os.access(path, os.R_OK | os.W_OK)
