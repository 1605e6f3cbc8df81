from .context import ClientContext
from .errors import (
    EmptyInputError,
    GenerationError,
    IdentityError,
    InvalidMediaError,
    MedAssistError,
    MediaAccessError,
    PersistenceError,
    RequestInFlightError,
    StreamError,
    SynthesisError,
)
from .message_table import MessageTable
from .models import ChatMessage, ConversationScope, PromptRequest, TurnResult
from .notices import Notice, Notifier
from .orchestrator import ChatSession
from .prompt import assemble_prompt, assemble_request, prompt_parts
from .streaming import StreamingResponseConsumer

__all__ = [
    "ChatMessage",
    "ChatSession",
    "ClientContext",
    "ConversationScope",
    "EmptyInputError",
    "GenerationError",
    "IdentityError",
    "InvalidMediaError",
    "MedAssistError",
    "MediaAccessError",
    "MessageTable",
    "Notice",
    "Notifier",
    "PersistenceError",
    "PromptRequest",
    "RequestInFlightError",
    "StreamError",
    "StreamingResponseConsumer",
    "SynthesisError",
    "TurnResult",
    "assemble_prompt",
    "assemble_request",
    "prompt_parts",
]
