"""Request, response and cache data types shared by the routing layer."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from core.errors import ErrorKind


class TaskType(str, Enum):
    """Well-known capabilities a provider may declare."""
    TEXT_GENERATION = "text-generation"
    TEXT_SUMMARIZATION = "text-summarization"
    CONTENT_ANALYSIS = "content-analysis"
    IMAGE_ANALYSIS = "image-analysis"
    CODE_GENERATION = "code-generation"
    QUESTION_ANSWERING = "question-answering"
    TRANSLATION = "translation"
    VOICE_ANALYSIS = "voice-analysis"
    AUDIO_PROCESSING = "audio-processing"
    MULTIMODAL_INTERACTION = "multimodal-interaction"
    CUSTOM = "custom"


Capability = Union[str, TaskType]


def capability_tag(capability: Capability) -> str:
    """Normalize a capability to its plain string tag."""
    # str() of a str-mixin enum member is "TaskType.X", not its value
    if isinstance(capability, Enum):
        return str(capability.value)
    return str(capability)


@dataclass
class Request:
    """A generic AI request."""
    capability: Capability
    input_text: str = ""
    custom_params: Dict[str, str] = field(default_factory=dict)
    hints: Dict[str, str] = field(default_factory=dict)
    provider_id: Optional[str] = None
    context_id: Optional[str] = None

    @property
    def capability_tag(self) -> str:
        return capability_tag(self.capability)


@dataclass(frozen=True)
class Response:
    """Outcome of a request; failures are values, not exceptions."""
    success: bool
    text: str = ""
    error_message: str = ""
    error_kind: Optional[ErrorKind] = None
    provider_id: Optional[str] = None
    cached: bool = False
    # provider-reported price of the call, fed to the performance tracker
    cost: float = 0.0

    @classmethod
    def ok(
        cls,
        text: str,
        provider_id: Optional[str] = None,
        cached: bool = False,
        cost: float = 0.0,
    ) -> "Response":
        return cls(success=True, text=text, provider_id=provider_id, cached=cached, cost=cost)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        provider_id: Optional[str] = None,
    ) -> "Response":
        return cls(success=False, error_message=message, error_kind=kind, provider_id=provider_id)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    response: str
    provider_id: str
    created_at: float


class CacheConfig(BaseModel):
    """Bounds of the response cache."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    enabled: bool = True
    max_entries: int = Field(100, gt=0)
    max_age_seconds: int = Field(3600, gt=0)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "CacheConfig":
        """Build from plain key-value pairs, e.g. ``{"max_entries": "50"}``."""
        return cls.model_validate(dict(mapping))


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    hits: int
    misses: int
    hit_rate: float
