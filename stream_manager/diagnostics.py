"""
Worker failure diagnostics.

Maps a worker's (exit code, stderr text, context) to a structured
diagnosis an operator can act on. Pure: no process or filesystem access, so
every rule is testable with literal inputs.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple, Union

logger = logging.getLogger(__name__)

UINT32_SPAN = 2 ** 32
INT32_MAX = 2 ** 31 - 1

DEFAULT_ICECAST_PORT = 8000

# Canonical (signed) exit code -> meaning
EXIT_CODE_MEANINGS: Dict[int, str] = {
    1: "Generic failure",
    -1: "General error",
    -2: "Invalid argument or misuse",
    -5: "Connection refused / access denied",
    -9: "Killed (SIGKILL)",
    -15: "Terminated (SIGTERM)",
    -1482175992: "Native process crash (0xA7F00008)",
}

CONNECTION_REFUSED_CODE = -5
NATIVE_CRASH_CODE = -1482175992


def normalize_exit_code(exit_code: Union[int, str, None]) -> Optional[int]:
    """
    Fold unsigned 32-bit exit codes onto their signed twins.

    Some platforms report a negative termination code as its unsigned
    32-bit representation (-5 shows up as 4294967291). Both forms map to the
    same canonical signed value.

    Args:
        exit_code: Raw exit code (int, numeric string or None)

    Returns:
        Canonical signed exit code, or None if unknown/unparseable
    """
    if exit_code is None:
        return None
    try:
        code = int(exit_code)
    except (TypeError, ValueError):
        return None

    if INT32_MAX < code < UINT32_SPAN:
        return code - UINT32_SPAN
    return code


class DiagnosisCategory(str, Enum):
    """Failure categories, in matching order."""

    CONNECTION = "connection"
    PORT_CONFLICT = "port_conflict"
    AUTHENTICATION = "authentication"
    MOUNT_POINT = "mount_point"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_BUSY = "device_busy"
    CODEC = "codec"
    FORMAT = "format"
    RESOURCE = "resource"
    TIMEOUT = "timeout"
    PROCESS_CRASH = "process_crash"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Diagnosis severities."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass
class DiagnosisResult:
    """Structured diagnosis for one failure event."""

    category: DiagnosisCategory
    severity: Severity
    title: str
    description: str
    solutions: List[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    exit_code_meaning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "solutions": list(self.solutions),
            "exitCode": self.exit_code,
            "exitCodeMeaning": self.exit_code_meaning,
        }

    def summary(self) -> str:
        return f"{self.title}: {self.description}"


@dataclass
class _Rule:
    """Template for one diagnosis category."""

    category: DiagnosisCategory
    severity: Severity
    title: str
    description: str
    solutions: Tuple[str, ...]
    patterns: Tuple[str, ...] = ()


# Rules checked in this order against stderr; first match wins.
RULES: List[_Rule] = [
    _Rule(
        category=DiagnosisCategory.CONNECTION,
        severity=Severity.CRITICAL,
        title="Cannot Connect to Icecast Server",
        description="The worker could not connect to the Icecast server on port {port}.",
        solutions=(
            "Check that Icecast is running and shows as online",
            "Check whether another application is using port {port}",
            "If port {port} is taken, stop that application or change the Icecast port",
            "Restart Icecast (stop, then start)",
            "Check firewall rules for port {port}",
        ),
        patterns=(
            r"connection refused",
            r"error number -138",
            r"could not connect",
            r"connection failed",
            r"econnrefused",
            r"network is unreachable",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.PORT_CONFLICT,
        severity=Severity.CRITICAL,
        title="Port Already In Use",
        description="Port {port} is already being used by another application.",
        solutions=(
            "Find the process holding port {port} and stop it",
            "Make sure no previous Icecast instance is still running",
            "Or move Icecast to a free port in icecast.xml and restart it",
        ),
        patterns=(r"address already in use", r"eaddrinuse", r"bind failed"),
    ),
    _Rule(
        category=DiagnosisCategory.AUTHENTICATION,
        severity=Severity.CRITICAL,
        title="Authentication Failed",
        description="Icecast rejected the worker's source credentials.",
        solutions=(
            "Check <source-password> in icecast.xml",
            "Restart Icecast after changing passwords",
            "Make sure the source user is 'source'",
        ),
        patterns=(r"401 unauthorized", r"authentication failed", r"invalid password"),
    ),
    _Rule(
        category=DiagnosisCategory.MOUNT_POINT,
        severity=Severity.ERROR,
        title="Stream Limit Reached",
        description="Icecast refused the mountpoint for stream {stream}.",
        solutions=(
            "Stop an unused stream to free a source slot",
            "Raise <sources> under <limits> in icecast.xml and restart Icecast",
            "Make sure no other encoder is already using this mountpoint",
        ),
        patterns=(
            r"mountpoint in use",
            r"source limit reached",
            r"too many sources",
            r"403 forbidden",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.DEVICE_NOT_FOUND,
        severity=Severity.ERROR,
        title="Audio Device Not Found",
        description="The capture device '{device}' could not be opened.",
        solutions=(
            "Check that the device is connected and enabled",
            "Refresh the device list and pick the device again",
            "Reconnect USB audio interfaces and retry",
        ),
        patterns=(
            r"no such device",
            r"could not find audio (?:only )?device",
            r"cannot open audio device",
            r"i/o error",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.DEVICE_BUSY,
        severity=Severity.ERROR,
        title="Audio Device In Use",
        description="The capture device '{device}' is held by another application.",
        solutions=(
            "Close other applications using the device",
            "Disable exclusive mode for the device in the OS sound settings",
            "Make sure no other stream uses the same device",
        ),
        patterns=(
            r"device or resource busy",
            r"device is busy",
            r"already in use by another application",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.CODEC,
        severity=Severity.ERROR,
        title="Audio Codec Not Available",
        description="The installed ffmpeg build lacks the requested audio encoder.",
        solutions=(
            "Install a full ffmpeg build that includes libmp3lame",
            "Select a different output format",
        ),
        patterns=(
            r"unknown encoder",
            r"encoder not found",
            r"codec not currently supported",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.FORMAT,
        severity=Severity.ERROR,
        title="Unsupported Format",
        description="ffmpeg could not handle the input or output format.",
        solutions=(
            "Check the capture input format for this platform",
            "Select a different output format",
        ),
        patterns=(
            r"invalid data found",
            r"unknown input format",
            r"output format .* not available",
        ),
    ),
    _Rule(
        category=DiagnosisCategory.RESOURCE,
        severity=Severity.CRITICAL,
        title="System Resource Error",
        description="The system ran out of a resource the worker needs.",
        solutions=(
            "Stop unused streams to free memory",
            "Free disk space for logs",
            "Restart the machine if the problem persists",
        ),
        patterns=(r"cannot allocate memory", r"out of memory", r"no space left"),
    ),
    _Rule(
        category=DiagnosisCategory.TIMEOUT,
        severity=Severity.ERROR,
        title="Connection Timeout",
        description="The connection to Icecast on port {port} timed out.",
        solutions=(
            "Check that Icecast is responsive on port {port}",
            "Check network and firewall settings",
            "Restart Icecast and retry",
        ),
        patterns=(r"timed out", r"timeout"),
    ),
]

_RULES_BY_CATEGORY = {rule.category: rule for rule in RULES}

_PROCESS_CRASH_RULE = _Rule(
    category=DiagnosisCategory.PROCESS_CRASH,
    severity=Severity.CRITICAL,
    title="Worker Process Crashed",
    description="The encoder process for stream {stream} terminated unexpectedly.",
    solutions=(
        "Restart the stream",
        "Check the stream log for the last messages before the crash",
        "Update ffmpeg if crashes repeat",
    ),
)

_MISSING_PROCESS_RULE = _Rule(
    category=DiagnosisCategory.PROCESS_CRASH,
    severity=Severity.ERROR,
    title="Worker Process Lost",
    description="Stream {stream} was marked running but no encoder process was found.",
    solutions=(
        "Restart the stream",
        "Check whether the process was stopped outside the control plane",
    ),
)

_GENERIC_RULE = _Rule(
    category=DiagnosisCategory.UNKNOWN,
    severity=Severity.WARNING,
    title="Stream Failed to Start",
    description="The worker exited unexpectedly (exit code {exit_code}).",
    solutions=(
        "Check that Icecast is running",
        "Check that the audio device is connected",
        "Review the stream log for details",
        "Try restarting the stream",
    ),
)

# Lines ffmpeg prints before doing any work
_BANNER_PATTERN = re.compile(
    r"^\s*(?:ffmpeg version|built with|configuration:|lib\w+\s+\d|copyright)",
    re.IGNORECASE,
)


class DiagnosticsEngine:
    """
    Classifies worker failures.

    Rule order: a connection-refused exit code, then stderr patterns
    (connection phrases first), then a native crash code, then the
    "banner only" heuristic, then a generic diagnosis. The result always
    carries a title and at least one solution.
    """

    COMPILED_PATTERNS: Dict[DiagnosisCategory, List[Pattern]] = {}

    @classmethod
    def _compile_patterns(cls) -> None:
        """Compile rule regexes once per process."""
        if not cls.COMPILED_PATTERNS:
            for rule in RULES:
                cls.COMPILED_PATTERNS[rule.category] = [
                    re.compile(pattern, re.IGNORECASE) for pattern in rule.patterns
                ]

    def __init__(self):
        self._compile_patterns()

    def diagnose(
        self,
        exit_code: Union[int, str, None],
        stderr: Optional[str],
        context: Optional[Mapping[str, Any]] = None,
    ) -> DiagnosisResult:
        """
        Diagnose a worker failure.

        Args:
            exit_code: Raw exit code as reported by the OS
            stderr: Captured stderr text (may be empty)
            context: Optional keys icecastPort, port, deviceId, streamId

        Returns:
            DiagnosisResult
        """
        context = context or {}
        stderr = stderr or ""
        code = normalize_exit_code(exit_code)

        if code == CONNECTION_REFUSED_CODE:
            return self._build(_RULES_BY_CATEGORY[DiagnosisCategory.CONNECTION], code, context)

        for rule in RULES:
            for pattern in self.COMPILED_PATTERNS[rule.category]:
                if pattern.search(stderr):
                    logger.debug(f"Diagnosis matched category {rule.category.value}")
                    return self._build(rule, code, context)

        if code == NATIVE_CRASH_CODE:
            return self._build(_PROCESS_CRASH_RULE, code, context)

        if self._is_banner_only(stderr):
            # ffmpeg printed its banner and died before logging anything else;
            # in practice that is the Icecast connection failing
            return self._build(_RULES_BY_CATEGORY[DiagnosisCategory.CONNECTION], code, context)

        return self._build(_GENERIC_RULE, code, context)

    def diagnose_missing_process(
        self, context: Optional[Mapping[str, Any]] = None
    ) -> DiagnosisResult:
        """Diagnosis for a running stream whose process vanished without an exit code."""
        return self._build(_MISSING_PROCESS_RULE, None, context or {})

    @staticmethod
    def _is_banner_only(stderr: str) -> bool:
        lines = [line for line in stderr.splitlines() if line.strip()]
        if not lines:
            return False
        return all(_BANNER_PATTERN.match(line) for line in lines)

    @staticmethod
    def _build(rule: _Rule, code: Optional[int], context: Mapping[str, Any]) -> DiagnosisResult:
        values = {
            "port": context.get("icecastPort") or context.get("port") or DEFAULT_ICECAST_PORT,
            "device": context.get("deviceId") or "unknown",
            "stream": context.get("streamId") or "unknown",
            "exit_code": code if code is not None else "unknown",
        }
        return DiagnosisResult(
            category=rule.category,
            severity=rule.severity,
            title=rule.title,
            description=rule.description.format(**values),
            solutions=[solution.format(**values) for solution in rule.solutions],
            exit_code=code,
            exit_code_meaning=EXIT_CODE_MEANINGS.get(code) if code is not None else None,
        )


def format_message(diagnosis: DiagnosisResult) -> str:
    """
    Render a diagnosis as multi-line operator text.

    Args:
        diagnosis: Diagnosis to render

    Returns:
        Text suitable for a log entry
    """
    lines = [
        f"[{diagnosis.severity.value.upper()}] {diagnosis.title}",
        diagnosis.description,
    ]
    if diagnosis.exit_code is not None:
        meaning = f" ({diagnosis.exit_code_meaning})" if diagnosis.exit_code_meaning else ""
        lines.append(f"Exit code: {diagnosis.exit_code}{meaning}")
    lines.append("Solutions:")
    lines.extend(f"  {i}. {solution}" for i, solution in enumerate(diagnosis.solutions, 1))
    return "\n".join(lines)
