"""Provider handlers — one implementation per provider family.

Re-exports the handler classes so callers can write
``from research_relay.handlers import GoogleHandler``.
"""

from .base import ProviderHandler
from .google import GoogleHandler
from .openai_chat import OpenAIChatHandler
from .openai_responses import OpenAIResponsesHandler
from .research import ResearchPipelineHandler

__all__ = [
    "GoogleHandler",
    "OpenAIChatHandler",
    "OpenAIResponsesHandler",
    "ProviderHandler",
    "ResearchPipelineHandler",
]
