"""
Discctl Drive Discovery
Parses the kernel CD-ROM capability table, probes device access, and
maintains the current drive catalog
"""

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, fields
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Set, Tuple, Iterable

from . import activity
from . import config
from .error_detection import DriveTableError, DriveBusyError

CDROM_INFO = "/proc/sys/dev/cdrom/info"
SYS_BLOCK = "/sys/block"
DEV_DIR = "/dev"

# Device node name prefixes used by the kernel for optical drives
OPTICAL_PREFIXES = ("sr", "scd", "hd")


@dataclass
class DriveRecord:
    """Capabilities and identity of one optical drive"""
    name: str = ""
    speed: int = 0
    slots: int = 0
    can_close_tray: bool = False
    can_open_tray: bool = False
    can_lock_tray: bool = False
    can_change_speed: bool = False
    can_select_disk: bool = False
    can_read_multisession: bool = False
    can_read_mcn: bool = False
    reports_media_changed: bool = False
    can_play_audio: bool = False
    can_write_cdr: bool = False
    can_write_cdrw: bool = False
    can_read_dvd: bool = False
    can_write_dvdr: bool = False
    can_write_dvdram: bool = False
    can_read_mrw: bool = False
    can_write_mrw: bool = False
    can_write_ram: bool = False
    vendor: str = ""
    model: str = ""
    accessible: bool = False

    @property
    def path(self) -> str:
        return device_path(self.name)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        data = {_camel(f.name): getattr(self, f.name) for f in fields(self)}
        data["path"] = self.path
        return dict(sorted(data.items()))


# Lowercased table key -> (value type, DriveRecord field)
CAPABILITY_FIELDS = {
    "drive speed": (int, "speed"),
    "drive # of slots": (int, "slots"),
    "can close tray": (bool, "can_close_tray"),
    "can open tray": (bool, "can_open_tray"),
    "can lock tray": (bool, "can_lock_tray"),
    "can change speed": (bool, "can_change_speed"),
    "can select disk": (bool, "can_select_disk"),
    "can read multisession": (bool, "can_read_multisession"),
    "can read mcn": (bool, "can_read_mcn"),
    "reports media changed": (bool, "reports_media_changed"),
    "can play audio": (bool, "can_play_audio"),
    "can write cd-r": (bool, "can_write_cdr"),
    "can write cd-rw": (bool, "can_write_cdrw"),
    "can read dvd": (bool, "can_read_dvd"),
    "can write dvd-r": (bool, "can_write_dvdr"),
    "can write dvd-ram": (bool, "can_write_dvdram"),
    "can read mrw": (bool, "can_read_mrw"),
    "can write mrw": (bool, "can_write_mrw"),
    "can write ram": (bool, "can_write_ram"),
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _convert(kind, token: str, line_no: int, key: str):
    if kind is bool:
        return token == "1"
    try:
        return int(token, 10)
    except ValueError:
        raise DriveTableError(f"Line {line_no}: '{key}' expects integers, got {token!r}")


def parse_capability_table(text: str) -> Dict[str, DriveRecord]:
    """Parse the kernel CD-ROM info table into one DriveRecord per drive.

    The table is column-positional: the 'drive name' row lists the drives,
    and every following 'key: value' row carries one token per drive in the
    same order. Rows before the drive name row are ignored.

    Args:
        text: Contents of /proc/sys/dev/cdrom/info

    Returns:
        Dict of device name -> DriveRecord

    Raises:
        DriveTableError: on an unknown key, a row whose token count differs
            from the number of drives, or a malformed value
    """
    names = None
    records: Dict[str, DriveRecord] = {}

    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue

        key, sep, value = line.partition(":")
        key = key.strip().lower()

        if names is None:
            if sep and "drive name" in key:
                names = value.split()
                records = {name: DriveRecord(name=name) for name in names}
            continue

        if not sep:
            raise DriveTableError(f"Line {line_no}: expected 'key: value', got {raw!r}")

        entry = CAPABILITY_FIELDS.get(key)
        if entry is None:
            raise DriveTableError(f"Line {line_no}: unknown capability '{key}'")

        tokens = value.split()
        if len(tokens) != len(names):
            raise DriveTableError(
                f"Line {line_no}: '{key}' has {len(tokens)} value(s) for {len(names)} drive(s)"
            )

        kind, attr = entry
        for name, token in zip(names, tokens):
            setattr(records[name], attr, _convert(kind, token, line_no, key))

    return records


def read_capability_table(path: str = CDROM_INFO) -> Dict[str, DriveRecord]:
    """Read and parse the kernel capability table"""
    with open(path) as f:
        return parse_capability_table(f.read())


def device_name(device: str) -> str:
    """Bare device name: '/dev/sr0' and 'sr0' both become 'sr0'"""
    return os.path.basename(device.strip().rstrip("/"))


def device_path(device: str, dev_dir: str = DEV_DIR) -> str:
    """Device node path: 'sr0' and '/dev/sr0' both become '/dev/sr0'"""
    return os.path.join(dev_dir, device_name(device))


def _read_sysfs(path: Path) -> str:
    try:
        return path.read_text().strip()
    except FileNotFoundError:
        # Older kernels do not expose every attribute
        return ""
    except OSError as e:
        activity.log_warning(f"Unable to read {path}: {e}")
        return ""


def probe_drive_access(name: str, sys_block: str = SYS_BLOCK,
                       dev_dir: str = DEV_DIR) -> Tuple[str, str, bool]:
    """Read vendor/model strings and test read+write access to the device node.

    Returns:
        (vendor, model, accessible)
    """
    device_dir = Path(sys_block) / name / "device"
    vendor = _read_sysfs(device_dir / "vendor")
    model = _read_sysfs(device_dir / "model")

    node = device_path(name, dev_dir)
    accessible = os.access(node, os.R_OK | os.W_OK)
    if not accessible:
        activity.log_warning(f"No read/write access to {node}")

    return vendor, model, accessible


def list_device_nodes(dev_dir: str = DEV_DIR) -> List[str]:
    """List device nodes that look like optical drives"""
    try:
        entries = os.listdir(dev_dir)
    except PermissionError as e:
        activity.log_error(f"Permission denied listing {dev_dir}: {e}")
        return []

    return sorted(e for e in entries if e.startswith(OPTICAL_PREFIXES))


def build_catalog(excluded: Iterable[str] = (), cdrom_info: str = CDROM_INFO,
                  sys_block: str = SYS_BLOCK,
                  dev_dir: str = DEV_DIR) -> Mapping[str, DriveRecord]:
    """Join present device nodes with the kernel capability table.

    Excluded devices are dropped before the table is read. Nodes without a
    capability record are left out.
    """
    excluded = {device_name(d) for d in excluded}

    names = []
    for name in list_device_nodes(dev_dir):
        if name in excluded:
            activity.device_excluded(name)
            continue
        names.append(name)

    if not names:
        return MappingProxyType({})

    capabilities = read_capability_table(cdrom_info)

    drives = {}
    for name in names:
        record = capabilities.get(name)
        if record is None:
            activity.log_debug(f"No capability record for {name}, skipping")
            continue
        record.vendor, record.model, record.accessible = probe_drive_access(
            name, sys_block, dev_dir
        )
        drives[name] = record

    return MappingProxyType(drives)


# Current catalog snapshot, replaced whole on refresh
_catalog: Mapping[str, DriveRecord] = MappingProxyType({})


def get_catalog() -> Mapping[str, DriveRecord]:
    """Get the current drive catalog"""
    return _catalog


def refresh_catalog(cfg: dict) -> Mapping[str, DriveRecord]:
    """Rebuild the drive catalog and swap it in.

    On failure the previous catalog stays in place and the error propagates.
    """
    global _catalog
    system = cfg.get('system', {})
    catalog = build_catalog(
        config.excluded_devices(cfg),
        cdrom_info=system.get('cdrom_info', CDROM_INFO),
        sys_block=system.get('sys_block', SYS_BLOCK),
        dev_dir=system.get('dev_dir', DEV_DIR),
    )
    _catalog = catalog
    activity.drives_refreshed(len(catalog))
    return catalog


class DeviceLocks:
    """Per-drive mutual exclusion keyed by normalized device path.

    Only drives currently held are tracked; an entry is dropped on release.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[str] = set()

    @contextmanager
    def hold(self, device: str):
        """Hold the drive for the duration of the block.

        Raises:
            DriveBusyError: if another operation already holds the drive
        """
        path = device_path(device)
        with self._guard:
            if path in self._held:
                raise DriveBusyError(path)
            self._held.add(path)
        try:
            yield path
        finally:
            with self._guard:
                self._held.discard(path)

    def is_busy(self, device: str) -> bool:
        with self._guard:
            return device_path(device) in self._held


# Global lock table shared by all request threads
device_locks = DeviceLocks()
