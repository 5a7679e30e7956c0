"""
Discctl Ripping Engine
Drives cd-paranoia for track and whole-disc rips and drive analysis, and eject for the tray
"""

import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Tuple

from . import activity
from .drives import device_name, device_path
from .identify import DiscIdentifier
from .error_detection import (
    ErrorCategory,
    ErrorCode,
    RipError,
    format_error_message,
    tool_failure,
    tool_missing,
    _get_suggestion,
)

PARANOIA_CMD = ["cd-paranoia"]
EJECT_CMD = ["eject"]

# Final log line cd-paranoia writes when --analyze-drive finds no problems
ANALYSIS_OK = "Drive tests OK with Paranoia."


@dataclass
class TrackRip:
    """Outcome of one successful track extraction"""
    track: int = 0
    speed: int = 0
    output_dir: str = ""
    audio_path: str = ""
    log_path: str = ""
    elapsed: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "trackNum": self.track,
            "speed": self.speed,
            "outputDir": self.output_dir,
            "audioPath": self.audio_path,
            "logPath": self.log_path,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class DiscRip:
    """Outcome of a successful whole-disc rip"""
    last_track: int = 0
    speed: int = 0
    output_dir: str = ""
    tracks: List[TrackRip] = field(default_factory=list)
    elapsed: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "lastTrack": self.last_track,
            "speed": self.speed,
            "outputDir": self.output_dir,
            "tracks": [t.to_dict() for t in self.tracks],
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class AnalysisResult:
    """Outcome of a drive self-test; the log stays on disk either way"""
    passed: bool = False
    log_path: str = ""
    last_line: str = ""

    def to_dict(self) -> Dict:
        return {
            "passed": self.passed,
            "logPath": self.log_path,
            "lastLine": self.last_line,
        }


def rip_paths(output_dir, filename: str) -> Tuple[Path, Path]:
    """Log and audio paths for a rip: <dir>/<filename>.log and <dir>/<filename>.wav"""
    output_dir = Path(output_dir)
    return output_dir / f"{filename}.log", output_dir / f"{filename}.wav"


def last_log_line(log_path) -> str:
    """Last non-empty line of a log file, or '' if the file is missing or empty"""
    try:
        with open(log_path, errors="replace") as f:
            lines = [line.strip() for line in f if line.strip()]
    except FileNotFoundError:
        return ""
    except OSError as e:
        activity.log_warning(f"Unable to read {log_path}: {e}")
        return ""
    return lines[-1] if lines else ""


class Paranoia:
    """Wrapper for the cd-paranoia and eject command-line tools"""

    def __init__(self, config: dict = None, identifier: Optional[DiscIdentifier] = None):
        self.config = config or {}
        tools = self.config.get('tools', {})
        self.command = list(tools.get('paranoia', PARANOIA_CMD))
        self.eject_command = list(tools.get('eject', EJECT_CMD))
        # Tools run from the temp dir so stray files never land in the service dir
        self.workdir = self.config.get('paths', {}).get('tmp')
        self.identifier = identifier or DiscIdentifier(self.config)

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        """Run cd-paranoia to completion, capturing both output streams"""
        cmd = self.command + args
        activity.log_debug(f"PARANOIA: running {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, cwd=self.workdir)

    def rip_track(self, device: str, track: int, speed: int, output_dir,
                  filename: str = None) -> Tuple[Optional[TrackRip], Optional[RipError]]:
        """Extract one track to <output_dir>/<filename>.wav.

        Unreadable sectors are never skipped: the first skip aborts the
        track. Debug and summary logs both go to <output_dir>/<filename>.log.
        A partial audio file is left in place on failure.

        Args:
            device: Drive name or path
            track: Track number on the disc
            speed: Forced read speed
            output_dir: Directory for the audio and log files (created if missing)
            filename: Base filename, defaults to the track number

        Returns:
            (TrackRip, None) on success, (None, RipError) on failure
        """
        path = device_path(device)
        filename = filename or str(track)
        target = f"track {track}"

        try:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            activity.rip_failed(path, target, str(e))
            return None, RipError(
                category=ErrorCategory.IO,
                code=ErrorCode.OUTPUT_UNWRITABLE,
                message=f"Unable to create output directory {output_dir}",
                details=str(e),
                suggestion=_get_suggestion(ErrorCode.OUTPUT_UNWRITABLE),
            )

        log_path, audio_path = rip_paths(output_dir, filename)
        args = [
            "--quiet",
            f"--force-cdrom-device={path}",
            f"--force-read-speed={speed}",
            "--never-skip",
            "--abort-on-skip",
            f"--log-summary={log_path}",
            f"--log-debug={log_path}",
            str(track),
            str(audio_path),
        ]

        activity.rip_started(path, target, speed)
        start = time.monotonic()
        try:
            result = self._run(args)
        except OSError as e:
            error = tool_missing(self.command[0], e)
            activity.rip_failed(path, target, format_error_message(error))
            return None, error
        elapsed = time.monotonic() - start

        if result.returncode != 0 or result.stderr.strip():
            error = tool_failure(self.command[0], result.returncode, result.stderr)
            activity.rip_failed(path, target, format_error_message(error))
            return None, error

        activity.rip_completed(path, target, elapsed)
        return TrackRip(
            track=track,
            speed=speed,
            output_dir=str(output_dir),
            audio_path=str(audio_path),
            log_path=str(log_path),
            elapsed=elapsed,
        ), None

    def rip_disc(self, device: str, speed: int,
                 output_dir) -> Tuple[Optional[DiscRip], Optional[RipError]]:
        """Rip every track of the disc, 1 through the last track, in order.

        The disc is identified first to learn the last track; the job stops
        at the first failing track and completed tracks are left as they are.
        """
        path = device_path(device)
        start = time.monotonic()

        identity, error = self.identifier.identify(path)
        if error:
            activity.rip_failed(path, "disc", format_error_message(error))
            return None, error
        if identity is None:
            activity.rip_failed(path, "disc", "no disc found")
            return None, RipError(
                category=ErrorCategory.DISC,
                code=ErrorCode.DISC_NOT_FOUND,
                message=f"No disc found in {path}",
                recoverable=True,
                suggestion=_get_suggestion(ErrorCode.DISC_NOT_FOUND),
            )

        activity.rip_started(path, f"disc ({identity.last_track} tracks)", speed)
        tracks = []
        for number in range(1, identity.last_track + 1):
            rip, error = self.rip_track(path, number, speed, output_dir, str(number))
            if error:
                error.message = f"Track {number}: {error.message}"
                activity.rip_failed(path, "disc", f"stopped at track {number} of {identity.last_track}")
                return None, error
            tracks.append(rip)

        elapsed = time.monotonic() - start
        activity.rip_completed(path, "disc", elapsed)
        return DiscRip(
            last_track=identity.last_track,
            speed=speed,
            output_dir=str(output_dir),
            tracks=tracks,
            elapsed=elapsed,
        ), None

    def analyze_drive(self, device: str, log_path,
                      speed: Optional[int] = None) -> Tuple[Optional[AnalysisResult], Optional[RipError]]:
        """Run the cd-paranoia drive self-test.

        The test passes only if the last non-empty line of the log file is
        exactly "Drive tests OK with Paranoia.". The log is the single
        source of truth; console output is not inspected.

        Args:
            device: Drive name or path
            log_path: Where the debug and summary logs are written
            speed: Forced read speed, or None to let cd-paranoia pick

        Returns:
            (AnalysisResult, None) on pass, (AnalysisResult or None, RipError) on failure
        """
        path = device_path(device)
        log_path = Path(log_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            activity.log_error(f"Drive analysis failed: {path} - {e}")
            return None, RipError(
                category=ErrorCategory.IO,
                code=ErrorCode.OUTPUT_UNWRITABLE,
                message=f"Unable to create output directory {log_path.parent}",
                details=str(e),
                suggestion=_get_suggestion(ErrorCode.OUTPUT_UNWRITABLE),
            )

        args = ["--quiet", "--analyze-drive", f"--force-cdrom-device={path}"]
        if speed is not None:
            args.append(f"--force-read-speed={speed}")
        args += [f"--log-summary={log_path}", f"--log-debug={log_path}"]

        try:
            result = self._run(args)
        except OSError as e:
            error = tool_missing(self.command[0], e)
            activity.log_error(f"Drive analysis failed: {path} - {format_error_message(error)}")
            return None, error

        last_line = last_log_line(log_path)
        analysis = AnalysisResult(
            passed=result.returncode == 0 and last_line == ANALYSIS_OK,
            log_path=str(log_path),
            last_line=last_line,
        )
        activity.analysis_completed(path, analysis.passed, last_line)

        if result.returncode != 0:
            return analysis, tool_failure(self.command[0], result.returncode,
                                          result.stderr or last_line)

        if not analysis.passed:
            return analysis, RipError(
                category=ErrorCategory.DRIVE,
                code=ErrorCode.DRIVE_ANALYSIS_FAILED,
                message=f"Drive analysis failed for {path}",
                details=last_line or "Analysis log is empty",
                suggestion=_get_suggestion(ErrorCode.DRIVE_ANALYSIS_FAILED),
            )

        return analysis, None

    def eject(self, device: str) -> Optional[RipError]:
        """Open the tray of a drive. Returns None on success."""
        name = device_name(device)
        cmd = self.eject_command + [name]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            activity.log_error(f"Unable to run {cmd[0]}: {e}")
            return tool_missing(cmd[0], e)

        if result.returncode != 0:
            error = tool_failure(cmd[0], result.returncode, result.stderr)
            activity.log_warning(f"Eject failed for {name}: {format_error_message(error)}")
            return error

        activity.disc_ejected(name)
        return None


# Global engine instance (initialized when app starts)
_engine: Optional[Paranoia] = None


def get_engine() -> Optional[Paranoia]:
    """Get the global rip engine instance"""
    return _engine


def init_engine(config: dict) -> Paranoia:
    """Initialize the global rip engine"""
    global _engine
    _engine = Paranoia(config)
    return _engine
