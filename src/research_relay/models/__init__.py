"""Pydantic models for invocation requests/responses and research runs."""

from .invocation import (
    Attachment,
    GoogleConfig,
    InvocationRequest,
    InvocationResponse,
    ModelConfig,
    OpenAIConfig,
    PromptPair,
    ResponseMetadata,
    Source,
    UsageStats,
)
from .research import (
    DEPTH_PROFILES,
    DepthProfile,
    ResearchConfig,
    ResearchFinding,
    ResearchMetadata,
    ResearchProgress,
    ResearchQuestion,
    ResearchReport,
)

__all__ = [
    "Attachment",
    "DEPTH_PROFILES",
    "DepthProfile",
    "GoogleConfig",
    "InvocationRequest",
    "InvocationResponse",
    "ModelConfig",
    "OpenAIConfig",
    "PromptPair",
    "ResearchConfig",
    "ResearchFinding",
    "ResearchMetadata",
    "ResearchProgress",
    "ResearchQuestion",
    "ResearchReport",
    "ResponseMetadata",
    "Source",
    "UsageStats",
]
