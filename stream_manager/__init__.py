"""
Stream Manager

Audio capture workers (one ffmpeg process per stream) pushing to Icecast:
persistent registry, capacity admission, verified start/stop and failure
diagnostics.

Version: 1.0.0
"""

__version__ = "1.0.0"

from stream_manager.capacity import AdmissionDecision, CapacityGate
from stream_manager.command_builder import WorkerCommandBuilder
from stream_manager.config import AudioFormat, StreamManagerSettings
from stream_manager.diagnostics import DiagnosisResult, DiagnosticsEngine, normalize_exit_code
from stream_manager.models import StreamRecord, StreamStatus, generate_stream_id
from stream_manager.orchestrator import StreamOrchestrator
from stream_manager.registry import StreamRegistry

__all__ = [
    "AdmissionDecision",
    "CapacityGate",
    "WorkerCommandBuilder",
    "AudioFormat",
    "StreamManagerSettings",
    "DiagnosisResult",
    "DiagnosticsEngine",
    "normalize_exit_code",
    "StreamRecord",
    "StreamStatus",
    "generate_stream_id",
    "StreamOrchestrator",
    "StreamRegistry",
]
