from .camera import CameraController, StillFrameDevices, decode_frame, encode_still
from .flows import AnalysisFlows
from .genai_client import GeminiClient, GenerationResponse, GenerationStream, StreamChunk
from .playback import SpeechPlayback
from .speech import RecognitionEvent, SpeechEvent, SpeechRecognitionSession, transcript_events
from .transcription import WhisperTranscriber
from .tts import TextToSpeechClient

__all__ = [
    "AnalysisFlows",
    "CameraController",
    "GeminiClient",
    "GenerationResponse",
    "GenerationStream",
    "RecognitionEvent",
    "SpeechEvent",
    "SpeechPlayback",
    "SpeechRecognitionSession",
    "StillFrameDevices",
    "StreamChunk",
    "TextToSpeechClient",
    "WhisperTranscriber",
    "decode_frame",
    "encode_still",
    "transcript_events",
]
