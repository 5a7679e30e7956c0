"""
Tests for Discctl ripper module
"""

import pytest
from unittest.mock import patch, MagicMock

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from discctl import ripper
from discctl.ripper import (
    ANALYSIS_OK,
    AnalysisResult,
    DiscRip,
    Paranoia,
    TrackRip,
    last_log_line,
    rip_paths,
)
from discctl.identify import DiscIdentity
from discctl.error_detection import ErrorCategory, ErrorCode, RipError


def completed(stdout="", stderr="", returncode=0):
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


def log_arg(cmd):
    """The --log-summary path from a cd-paranoia argv"""
    for arg in cmd:
        if arg.startswith('--log-summary='):
            return Path(arg.split('=', 1)[1])
    return None


class TestRipPaths:
    """Tests for deterministic artifact paths"""

    def test_paths_from_filename(self, tmp_path):
        log_path, audio_path = rip_paths(tmp_path, '3')
        assert log_path == tmp_path / '3.log'
        assert audio_path == tmp_path / '3.wav'

    def test_accepts_string_dir(self):
        log_path, audio_path = rip_paths('/srv/rips/sr0', 'intro')
        assert str(log_path) == '/srv/rips/sr0/intro.log'
        assert str(audio_path) == '/srv/rips/sr0/intro.wav'


class TestLastLogLine:
    """Tests for reading the final log line"""

    def test_missing_file(self, tmp_path):
        assert last_log_line(tmp_path / 'missing.log') == ''

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.log'
        path.write_text('')
        assert last_log_line(path) == ''

    def test_skips_trailing_blank_lines(self, tmp_path):
        path = tmp_path / 'a.log'
        path.write_text('first\nsecond\n\n   \n')
        assert last_log_line(path) == 'second'

    def test_directory_path(self, tmp_path):
        """Test a log path that is a directory reads as empty"""
        assert last_log_line(tmp_path) == ''


class TestResultSerialization:
    """Tests for result to_dict output"""

    def test_track_rip_to_dict(self):
        data = TrackRip(track=3, speed=8, output_dir='/out/sr0', audio_path='/out/sr0/3.wav',
                        log_path='/out/sr0/3.log', elapsed=1.23456).to_dict()
        assert data['trackNum'] == 3
        assert data['speed'] == 8
        assert data['outputDir'] == '/out/sr0'
        assert data['elapsed'] == 1.235

    def test_disc_rip_to_dict(self):
        data = DiscRip(last_track=2, speed=4, output_dir='/out/x',
                       tracks=[TrackRip(track=1), TrackRip(track=2)]).to_dict()
        assert data['lastTrack'] == 2
        assert [t['trackNum'] for t in data['tracks']] == [1, 2]

    def test_analysis_to_dict(self):
        data = AnalysisResult(passed=False, log_path='/x.log', last_line='boom').to_dict()
        assert data == {'passed': False, 'logPath': '/x.log', 'lastLine': 'boom'}


class TestRipTrack:
    """Tests for single-track extraction"""

    @patch('discctl.ripper.subprocess.run')
    def test_command_line(self, mock_run, tmp_path):
        """Test the exact cd-paranoia argument vector"""
        mock_run.return_value = completed()
        out = tmp_path / 'sr0'

        Paranoia().rip_track('sr0', 3, 8, out, 'song')

        cmd = mock_run.call_args[0][0]
        assert cmd == [
            'cd-paranoia',
            '--quiet',
            '--force-cdrom-device=/dev/sr0',
            '--force-read-speed=8',
            '--never-skip',
            '--abort-on-skip',
            f'--log-summary={out / "song.log"}',
            f'--log-debug={out / "song.log"}',
            '3',
            str(out / 'song.wav'),
        ]

    @patch('discctl.ripper.subprocess.run')
    def test_runs_in_tmp_dir(self, mock_run, sample_config, tmp_path):
        mock_run.return_value = completed()

        Paranoia(sample_config).rip_track('sr0', 1, 4, tmp_path / 'out')

        assert mock_run.call_args[1]['cwd'] == sample_config['paths']['tmp']

    @patch('discctl.ripper.subprocess.run')
    def test_success_result(self, mock_run, tmp_path):
        mock_run.return_value = completed()
        out = tmp_path / 'sr0'

        rip, error = Paranoia().rip_track('/dev/sr0', 5, 4, out)

        assert error is None
        assert rip.track == 5
        assert rip.speed == 4
        assert rip.output_dir == str(out)
        assert rip.audio_path == str(out / '5.wav')
        assert rip.log_path == str(out / '5.log')
        assert rip.elapsed >= 0

    @patch('discctl.ripper.subprocess.run')
    def test_creates_output_dir(self, mock_run, tmp_path):
        mock_run.return_value = completed()
        out = tmp_path / 'a' / 'b'

        Paranoia().rip_track('sr0', 1, 4, out)
        Paranoia().rip_track('sr0', 2, 4, out)

        assert out.is_dir()

    @patch('discctl.ripper.subprocess.run')
    def test_nonzero_exit_fails(self, mock_run, tmp_path):
        mock_run.return_value = completed(returncode=1, stderr="Unable to open disc.  Is there an audio CD in the drive?")

        rip, error = Paranoia().rip_track('sr0', 1, 4, tmp_path)

        assert rip is None
        assert error.code == ErrorCode.DISC_NOT_FOUND
        assert 'audio CD' in error.details

    @patch('discctl.ripper.subprocess.run')
    def test_stderr_alone_fails(self, mock_run, tmp_path):
        """Test error output fails the track even with a zero exit"""
        mock_run.return_value = completed(stderr="scsi_read error: sector=1234")

        rip, error = Paranoia().rip_track('sr0', 1, 4, tmp_path)

        assert rip is None
        assert error.code == ErrorCode.READ_ERROR
        assert error.details == "scsi_read error: sector=1234"

    @patch('discctl.ripper.subprocess.run')
    def test_partial_file_kept(self, mock_run, tmp_path):
        """Test a failed rip leaves its partial audio file for diagnosis"""
        def partial(cmd, **kwargs):
            Path(cmd[-1]).write_bytes(b'RIFF')
            return completed(returncode=1, stderr="aborting on skip")
        mock_run.side_effect = partial

        rip, error = Paranoia().rip_track('sr0', 1, 4, tmp_path)

        assert error.code == ErrorCode.SKIP_ABORTED
        assert (tmp_path / '1.wav').exists()

    @patch('discctl.ripper.subprocess.run')
    def test_missing_binary(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("cd-paranoia")

        rip, error = Paranoia().rip_track('sr0', 1, 4, tmp_path)

        assert rip is None
        assert error.code == ErrorCode.TOOL_NOT_FOUND

    @patch('discctl.ripper.subprocess.run')
    def test_unwritable_output_dir(self, mock_run, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('')

        rip, error = Paranoia().rip_track('sr0', 1, 4, blocker / 'sub')

        assert rip is None
        assert error.code == ErrorCode.OUTPUT_UNWRITABLE
        mock_run.assert_not_called()


class TestRipDisc:
    """Tests for whole-disc rips"""

    def make_engine(self, last_track=3, error=None):
        identifier = MagicMock()
        if error:
            identifier.identify.return_value = (None, error)
        elif last_track is None:
            identifier.identify.return_value = (None, None)
        else:
            identifier.identify.return_value = (DiscIdentity(first_track=1, last_track=last_track), None)
        return Paranoia(identifier=identifier)

    def test_rips_every_track_in_order(self, tmp_path):
        engine = self.make_engine(last_track=3)
        calls = []

        def fake_rip(device, track, speed, output_dir, filename):
            calls.append((device, track, speed, output_dir, filename))
            return TrackRip(track=track, speed=speed, output_dir=str(output_dir)), None

        with patch.object(engine, 'rip_track', side_effect=fake_rip):
            rip, error = engine.rip_disc('sr0', 8, tmp_path)

        assert error is None
        assert [c[4] for c in calls] == ['1', '2', '3']
        assert [c[1] for c in calls] == [1, 2, 3]
        assert all(c[0] == '/dev/sr0' and c[2] == 8 and c[3] == tmp_path for c in calls)
        assert rip.last_track == 3
        assert len(rip.tracks) == 3
        assert rip.elapsed >= 0

    def test_stops_at_first_failure(self, tmp_path):
        """Test a failing track 2 means track 3 is never attempted"""
        engine = self.make_engine(last_track=3)
        calls = []

        def fake_rip(device, track, speed, output_dir, filename):
            calls.append(filename)
            if track == 2:
                return None, RipError(category=ErrorCategory.IO, code=ErrorCode.READ_ERROR,
                                      message="Disc read error")
            return TrackRip(track=track), None

        with patch.object(engine, 'rip_track', side_effect=fake_rip):
            rip, error = engine.rip_disc('sr0', 4, tmp_path)

        assert rip is None
        assert calls == ['1', '2']
        assert error.message.startswith('Track 2')

    def test_identify_failure_aborts_before_ripping(self, tmp_path):
        failure = RipError(category=ErrorCategory.PROCESS, code=ErrorCode.TOOL_FAILED, message="discid failed")
        engine = self.make_engine(error=failure)

        with patch.object(engine, 'rip_track') as mock_rip:
            rip, error = engine.rip_disc('sr0', 4, tmp_path)

        assert rip is None
        assert error is failure
        mock_rip.assert_not_called()

    def test_no_disc(self, tmp_path):
        engine = self.make_engine(last_track=None)

        with patch.object(engine, 'rip_track') as mock_rip:
            rip, error = engine.rip_disc('sr0', 4, tmp_path)

        assert rip is None
        assert error.code == ErrorCode.DISC_NOT_FOUND
        mock_rip.assert_not_called()

    @patch('discctl.ripper.subprocess.run')
    def test_whole_disc_command_lines(self, mock_run, tmp_path):
        """Test each track gets its own cd-paranoia run and file names"""
        mock_run.return_value = completed()
        engine = self.make_engine(last_track=2)

        rip, error = engine.rip_disc('sr0', 4, tmp_path)

        assert error is None
        tracks = [call[0][0][-2:] for call in mock_run.call_args_list]
        assert tracks == [['1', str(tmp_path / '1.wav')], ['2', str(tmp_path / '2.wav')]]


class TestAnalyzeDrive:
    """Tests for the drive self-test"""

    def run_with_log(self, mock_run, content, returncode=0):
        def write_log(cmd, **kwargs):
            log_arg(cmd).write_text(content)
            return completed(returncode=returncode)
        mock_run.side_effect = write_log

    @patch('discctl.ripper.subprocess.run')
    def test_pass(self, mock_run, tmp_path):
        self.run_with_log(mock_run, "Checking cache...\n" + ANALYSIS_OK + "\n\n")

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'sr0-drive-analysis.log')

        assert error is None
        assert analysis.passed is True
        assert analysis.last_line == ANALYSIS_OK

    @patch('discctl.ripper.subprocess.run')
    def test_other_last_line_fails(self, mock_run, tmp_path):
        self.run_with_log(mock_run, "Drive returned OK results, but drive caches 1 sector.\n")

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis.passed is False
        assert error.code == ErrorCode.DRIVE_ANALYSIS_FAILED
        assert error.details == "Drive returned OK results, but drive caches 1 sector."

    @patch('discctl.ripper.subprocess.run')
    def test_ok_line_not_last_fails(self, mock_run, tmp_path):
        self.run_with_log(mock_run, ANALYSIS_OK + "\nextra line\n")

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis.passed is False
        assert analysis.last_line == 'extra line'

    @patch('discctl.ripper.subprocess.run')
    def test_empty_log_fails(self, mock_run, tmp_path):
        self.run_with_log(mock_run, "")

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis.passed is False
        assert analysis.last_line == ''
        assert error is not None

    @patch('discctl.ripper.subprocess.run')
    def test_missing_log_fails(self, mock_run, tmp_path):
        mock_run.return_value = completed()

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis.passed is False
        assert error.details == "Analysis log is empty"

    @patch('discctl.ripper.subprocess.run')
    def test_nonzero_exit_fails(self, mock_run, tmp_path):
        """Test a failing exit status wins over an OK log line"""
        self.run_with_log(mock_run, ANALYSIS_OK + "\n", returncode=1)

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis.passed is False
        assert error is not None

    @patch('discctl.ripper.subprocess.run')
    def test_speed_omitted_by_default(self, mock_run, tmp_path):
        mock_run.return_value = completed()
        log = tmp_path / 'a.log'

        Paranoia().analyze_drive('sr0', log)

        assert mock_run.call_args[0][0] == [
            'cd-paranoia',
            '--quiet',
            '--analyze-drive',
            '--force-cdrom-device=/dev/sr0',
            f'--log-summary={log}',
            f'--log-debug={log}',
        ]

    @patch('discctl.ripper.subprocess.run')
    def test_forced_speed(self, mock_run, tmp_path):
        mock_run.return_value = completed()

        Paranoia().analyze_drive('sr0', tmp_path / 'a.log', speed=8)

        assert '--force-read-speed=8' in mock_run.call_args[0][0]

    @patch('discctl.ripper.subprocess.run')
    def test_missing_binary(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("cd-paranoia")

        analysis, error = Paranoia().analyze_drive('sr0', tmp_path / 'a.log')

        assert analysis is None
        assert error.code == ErrorCode.TOOL_NOT_FOUND

    @patch('discctl.ripper.subprocess.run')
    def test_unwritable_log_dir(self, mock_run, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('')

        analysis, error = Paranoia().analyze_drive('sr0', blocker / 'out' / 'sr0-drive-analysis.log')

        assert analysis is None
        assert error.code == ErrorCode.OUTPUT_UNWRITABLE
        mock_run.assert_not_called()

    @patch('discctl.ripper.subprocess.run')
    def test_log_path_is_directory(self, mock_run, tmp_path):
        log_dir = tmp_path / 'a.log'
        log_dir.mkdir()
        mock_run.return_value = completed()

        analysis, error = Paranoia().analyze_drive('sr0', log_dir)

        assert analysis.passed is False
        assert error.code == ErrorCode.DRIVE_ANALYSIS_FAILED
        assert error.details == "Analysis log is empty"


class TestEject:
    """Tests for tray control"""

    @patch('discctl.ripper.subprocess.run')
    def test_bare_device_name(self, mock_run):
        mock_run.return_value = completed()

        assert Paranoia().eject('/dev/sr0') is None
        assert mock_run.call_args[0][0] == ['eject', 'sr0']

    @patch('discctl.ripper.subprocess.run')
    def test_failure(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="eject: unable to find device 'sr7'")

        error = Paranoia().eject('sr7')

        assert error is not None
        assert error.code == ErrorCode.DRIVE_NOT_FOUND

    @patch('discctl.ripper.subprocess.run')
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("eject")

        assert Paranoia().eject('sr0').code == ErrorCode.TOOL_NOT_FOUND


class TestEngine:
    """Tests for the global engine"""

    def test_init_and_get(self, sample_config):
        assert ripper.get_engine() is None
        engine = ripper.init_engine(sample_config)
        assert ripper.get_engine() is engine
        assert engine.command == ['cd-paranoia']
