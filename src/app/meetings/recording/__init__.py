"""Recording pipeline -- roster, content fetch, transcript ingestion and
per-participant summaries for recording.completed notifications.
"""

from src.app.meetings.recording.batch import TranscriptBatchProcessor
from src.app.meetings.recording.pipeline import RecordingPipeline, RecordingResult
from src.app.meetings.recording.speaker import SpeakerService
from src.app.meetings.recording.summaries import ParticipantSummaryService

__all__ = [
    "ParticipantSummaryService",
    "RecordingPipeline",
    "RecordingResult",
    "SpeakerService",
    "TranscriptBatchProcessor",
]
