"""
Discctl Error Detection Module

Provides error categorization for drive discovery and external tool runs.
Tool failures are returned as structured RipError values; only capability
table format errors and drive lock contention are raised.
"""

import re
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict


class DriveTableError(ValueError):
    """The kernel capability table does not match the expected layout"""


class DriveBusyError(RuntimeError):
    """Another operation currently holds the drive"""

    def __init__(self, device: str):
        super().__init__(f"Drive {device} is busy")
        self.device = device


class ErrorCategory(Enum):
    """High-level error categories"""
    DISC = "disc"            # No disc, unreadable TOC
    DRIVE = "drive"          # Missing device, permissions, busy, self-test
    IO = "io"                # Read failures, aborted skips
    PROCESS = "process"      # Tool missing, crashed, killed, bad output
    NETWORK = "network"      # Lookup service failures
    FORMAT = "format"        # Kernel table drift
    UNKNOWN = "unknown"      # Unclassified


class ErrorCode(Enum):
    """Specific error codes for granular tracking"""
    # Disc errors (1xx)
    DISC_NOT_FOUND = 101
    DISC_UNREADABLE = 102

    # Drive errors (3xx)
    DRIVE_NOT_FOUND = 301
    DRIVE_BUSY = 302
    DRIVE_PERMISSION = 303
    DRIVE_ANALYSIS_FAILED = 304

    # I/O errors (4xx)
    READ_ERROR = 401
    SKIP_ABORTED = 402
    LOG_MISSING = 403
    OUTPUT_UNWRITABLE = 404

    # Process errors (6xx)
    TOOL_NOT_FOUND = 601
    TOOL_FAILED = 602
    TOOL_KILLED = 603
    BAD_OUTPUT = 604

    # Network errors (7xx)
    API_ERROR = 701

    # Format errors (8xx)
    DRIVE_TABLE = 801

    # Unknown (9xx)
    UNKNOWN = 999


@dataclass
class RipError:
    """Structured error information"""
    category: ErrorCategory
    code: ErrorCode
    message: str
    details: Optional[str] = None
    recoverable: bool = False
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'category': self.category.value,
            'code': self.code.value,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'suggestion': self.suggestion
        }


# Patterns for cd-paranoia, discid and eject error output, checked in order
ERROR_PATTERNS = [
    (r'Permission denied', ErrorCode.DRIVE_PERMISSION, "Permission denied on drive"),
    (r'Device or resource busy', ErrorCode.DRIVE_BUSY, "Drive is busy"),
    (r'no medium|medium not present|no disc|Unable to open disc', ErrorCode.DISC_NOT_FOUND, "No audio disc in drive"),
    (r'table of contents|read TOC|TOC read', ErrorCode.DISC_UNREADABLE, "Unable to read disc table of contents"),
    (r'skip', ErrorCode.SKIP_ABORTED, "Unreadable sectors, track aborted"),
    (r'read error|I/O error|Input/output error', ErrorCode.READ_ERROR, "Disc read error"),
    (r'No such file or directory|No such device|unable to find|not found', ErrorCode.DRIVE_NOT_FOUND, "Drive not found"),
]


def parse_tool_output(output: str) -> Optional[RipError]:
    """
    Match tool error output against known failure patterns.
    Returns RipError if a pattern matches, None otherwise.
    """
    if not output:
        return None

    for pattern, code, message in ERROR_PATTERNS:
        if re.search(pattern, output, re.IGNORECASE):
            return RipError(
                category=_code_to_category(code),
                code=code,
                message=message,
                details=output,
                recoverable=_is_recoverable(code),
                suggestion=_get_suggestion(code)
            )
    return None


def classify_return_code(tool: str, return_code: int) -> Optional[RipError]:
    """
    Classify a tool's exit status into a structured error.
    """
    if return_code == 0:
        return None

    if return_code < 0:
        code = ErrorCode.TOOL_KILLED
        message = f"{tool} was terminated (signal {-return_code})"
    elif return_code == 127:
        code = ErrorCode.TOOL_NOT_FOUND
        message = f"{tool} could not be executed"
    else:
        code = ErrorCode.TOOL_FAILED
        message = f"{tool} failed with code {return_code}"

    return RipError(
        category=_code_to_category(code),
        code=code,
        message=message,
        details=f"Exit code: {return_code}",
        recoverable=_is_recoverable(code),
        suggestion=_get_suggestion(code)
    )


def tool_failure(tool: str, return_code: int = 0, stderr: str = "") -> RipError:
    """
    Build the error for a failed tool run from its exit status and error stream.

    Priority:
    1. Known patterns in the error stream
    2. Classification by return code
    3. Generic failure carrying the error text
    """
    stderr = (stderr or "").strip()

    error = parse_tool_output(stderr)
    if error:
        error.message = f"{tool}: {error.message}"
        return error

    error = classify_return_code(tool, return_code)
    if error:
        if stderr:
            error.details = stderr
        return error

    return RipError(
        category=ErrorCategory.PROCESS,
        code=ErrorCode.TOOL_FAILED,
        message=f"{tool} reported an error",
        details=stderr,
        recoverable=False,
        suggestion=_get_suggestion(ErrorCode.TOOL_FAILED)
    )


def tool_missing(tool: str, exc: OSError) -> RipError:
    """Error for a tool that could not be spawned at all"""
    return RipError(
        category=ErrorCategory.PROCESS,
        code=ErrorCode.TOOL_NOT_FOUND,
        message=f"Unable to run {tool}",
        details=str(exc),
        recoverable=False,
        suggestion=_get_suggestion(ErrorCode.TOOL_NOT_FOUND)
    )


def _code_to_category(code: ErrorCode) -> ErrorCategory:
    """Map error code to category"""
    code_value = code.value
    if 100 <= code_value < 200:
        return ErrorCategory.DISC
    elif 300 <= code_value < 400:
        return ErrorCategory.DRIVE
    elif 400 <= code_value < 500:
        return ErrorCategory.IO
    elif 600 <= code_value < 700:
        return ErrorCategory.PROCESS
    elif 700 <= code_value < 800:
        return ErrorCategory.NETWORK
    elif 800 <= code_value < 900:
        return ErrorCategory.FORMAT
    return ErrorCategory.UNKNOWN


def _is_recoverable(code: ErrorCode) -> bool:
    """Determine if error is potentially recoverable"""
    recoverable_codes = {
        ErrorCode.DISC_NOT_FOUND,
        ErrorCode.DRIVE_BUSY,
        ErrorCode.READ_ERROR,
        ErrorCode.SKIP_ABORTED,
        ErrorCode.API_ERROR,
    }
    return code in recoverable_codes


def _get_suggestion(code: ErrorCode) -> Optional[str]:
    """Get actionable suggestion for error code"""
    suggestions = {
        ErrorCode.DISC_NOT_FOUND: "Insert an audio CD and try again",
        ErrorCode.DISC_UNREADABLE: "Clean the disc and try again",
        ErrorCode.DRIVE_NOT_FOUND: "Check drive connection and refresh the drive list",
        ErrorCode.DRIVE_BUSY: "Wait for the current operation on this drive to finish",
        ErrorCode.DRIVE_PERMISSION: "Add the service user to the cdrom group",
        ErrorCode.DRIVE_ANALYSIS_FAILED: "Inspect the analysis log; the drive may misreport its cache",
        ErrorCode.READ_ERROR: "Disc may be dirty or damaged. Try cleaning.",
        ErrorCode.SKIP_ABORTED: "Clean the disc or retry at a lower speed",
        ErrorCode.LOG_MISSING: "Check that the output directory is writable",
        ErrorCode.OUTPUT_UNWRITABLE: "Check the output directory permissions and free space",
        ErrorCode.TOOL_NOT_FOUND: "Install cd-paranoia, discid and eject",
        ErrorCode.TOOL_FAILED: "Check the tool output in the log file",
        ErrorCode.TOOL_KILLED: "Process was terminated. Check if manually stopped.",
        ErrorCode.BAD_OUTPUT: "Check the installed tool version",
        ErrorCode.DRIVE_TABLE: "Kernel drive table format is not supported",
    }
    return suggestions.get(code)


def format_error_message(error: RipError) -> str:
    """Format error for display in logs"""
    msg = f"[{error.category.value.upper()}] {error.message}"
    if error.suggestion:
        msg += f" - {error.suggestion}"
    return msg
