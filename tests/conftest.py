"""
Pytest fixtures for Discctl tests
"""

import json
import pytest
from pathlib import Path
from types import MappingProxyType

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from discctl import activity
from discctl import drives
from discctl import ripper


CDROM_INFO = """CD-ROM information, Id: cdrom.c 3.20 2003/12/17

drive name:\t\tsr1\tsr0
drive speed:\t\t48\t24
drive # of slots:\t1\t1
Can close tray:\t\t1\t1
Can open tray:\t\t1\t1
Can lock tray:\t\t1\t1
Can change speed:\t1\t1
Can select disk:\t0\t0
Can read multisession:\t1\t1
Can read MCN:\t\t1\t1
Reports media changed:\t1\t1
Can play audio:\t\t1\t1
Can write CD-R:\t\t0\t1
Can write CD-RW:\t0\t1
Can read DVD:\t\t0\t1
Can write DVD-R:\t0\t1
Can write DVD-RAM:\t0\t1
Can read MRW:\t\t0\t1
Can write MRW:\t\t0\t1
Can write RAM:\t\t0\t1

"""


@pytest.fixture(autouse=True)
def isolated_activity_log(tmp_path, monkeypatch):
    """Send activity log writes to a per-test file and reset verbosity"""
    monkeypatch.setattr(activity, 'ACTIVITY_LOG', tmp_path / 'activity.log')
    monkeypatch.setattr(activity, '_threshold', activity.LEVELS['INFO'])
    return tmp_path / 'activity.log'


@pytest.fixture(autouse=True)
def clean_globals(monkeypatch):
    """Start every test with an empty catalog, no engine and free drives"""
    monkeypatch.setattr(drives, '_catalog', MappingProxyType({}))
    monkeypatch.setattr(drives, 'device_locks', drives.DeviceLocks())
    monkeypatch.setattr(ripper, '_engine', None)


@pytest.fixture
def cdrom_info_text():
    """Kernel capability table for two drives (sr1 listed first, as the kernel does)"""
    return CDROM_INFO


@pytest.fixture
def system_tree(tmp_path, cdrom_info_text):
    """Fake /dev, /sys/block and /proc/sys/dev/cdrom/info"""
    dev = tmp_path / 'dev'
    dev.mkdir()
    for node in ('sr0', 'sr1', 'sr2', 'sda', 'tty0'):
        (dev / node).write_text('')

    sys_block = tmp_path / 'sys' / 'block'
    for name, vendor, model in (('sr0', 'HL-DT-ST', 'DVDRAM GH24NSB0'),
                                ('sr1', 'PLEXTOR ', 'CD-R PX-W4824A')):
        device_dir = sys_block / name / 'device'
        device_dir.mkdir(parents=True)
        (device_dir / 'vendor').write_text(vendor + '\n')
        (device_dir / 'model').write_text(model + '\n')

    info = tmp_path / 'cdrom_info'
    info.write_text(cdrom_info_text)

    return {
        'dev_dir': str(dev),
        'sys_block': str(sys_block),
        'cdrom_info': str(info),
    }


@pytest.fixture
def sample_config(tmp_path, system_tree):
    """Basic Discctl configuration for testing"""
    return {
        'drive': {'device': '/dev/sr0', 'excluded': []},
        'paths': {
            'tmp': str(tmp_path / 'tmp'),
            'output': str(tmp_path / 'output'),
        },
        'logging': {'level': 'info'},
        'ripping': {'default_speed': 4},
        'tools': {
            'paranoia': ['cd-paranoia'],
            'discid': ['discid', '--json'],
            'eject': ['eject'],
        },
        'system': system_tree,
    }


@pytest.fixture
def discid_payload():
    """Sample discid JSON output for a three-track disc"""
    return {
        'firstTrack': 1,
        'lastTrack': 3,
        'sectors': 95462,
        'freedbId': '1f0b7c03',
        'musicbrainzId': 'xUp1F2NkfP8s8jaeFn_Av3jNEI4-',
        'tracks': [
            {'number': 1, 'offset': 150, 'length': 23840},
            {'number': 2, 'offset': 23990, 'length': 35112},
            {'number': 3, 'offset': 59102, 'length': 36360},
        ],
    }


@pytest.fixture
def discid_output(discid_payload):
    return json.dumps(discid_payload)
