from parley.schemas.chat import ChatCompletionResponse, ChatMessage, ChatRequest, ErrorResponse
from parley.schemas.conversation import ConversationSummary, TurnCreate, TurnRead
from parley.schemas.health import HealthResponse, ServiceStatus

__all__ = [
    "ChatCompletionResponse",
    "ChatMessage",
    "ChatRequest",
    "ConversationSummary",
    "ErrorResponse",
    "HealthResponse",
    "ServiceStatus",
    "TurnCreate",
    "TurnRead",
]
