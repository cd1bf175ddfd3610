"""Pydantic validation models for REELCAST input validation"""
from pydantic import BaseModel, Field, field_validator, ConfigDict, model_validator
from typing import Optional
import re


class ProjectNameInput(BaseModel):
    """Validation model for project create/rename"""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        min_length=1,
        max_length=100,
        description="Project name"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name must not be empty")
        if len(v) > 100:
            raise ValueError("Project name too long (max. 100 characters)")

        if re.search(r'[\x00-\x1f\x7f]', v):
            raise ValueError("Project name contains control characters")

        return v


class QueuePolicyInput(BaseModel):
    """Validation model for the generation queue policy"""

    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries before a job becomes terminally failed"
    )
    inter_job_delay: float = Field(
        default=0.5,
        ge=0,
        le=60,
        description="Pause between jobs in seconds (provider rate-limit courtesy)"
    )
    video_poll_attempts: int = Field(
        default=30,
        ge=1,
        le=1000,
        description="Maximum polls of a long-running video operation"
    )
    video_poll_interval: float = Field(
        default=10.0,
        ge=0,
        le=600,
        description="Seconds between video operation polls"
    )
    request_timeout: int = Field(
        default=120,
        ge=1,
        le=3600,
        description="HTTP timeout for a single provider request"
    )


class ProviderSettingsInput(BaseModel):
    """Validation model for provider connection settings"""

    model_config = ConfigDict(str_strip_whitespace=True)

    base_url: str = Field(
        min_length=1,
        description="Provider REST base URL"
    )

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(('http://', 'https://')):
            raise ValueError("URL must start with http:// or https://")

        url_pattern = r'^https?://[\w\-\.]+(:\d+)?(/.*)?$'
        if not re.match(url_pattern, v):
            raise ValueError("Invalid URL format (e.g. https://generativelanguage.googleapis.com/v1beta)")

        return v.rstrip('/')


class QueueRequestInput(BaseModel):
    """Validation model for one enqueue request"""

    model_config = ConfigDict(str_strip_whitespace=True)

    kind: str = Field(description="'frame' or 'video'")
    clip_id: str = Field(min_length=1, description="Target clip id")
    frame_type: Optional[str] = Field(default=None, description="'start' or 'end' for frame jobs")
    prompt_override: Optional[str] = Field(default=None)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v not in ("frame", "video"):
            raise ValueError(f"Unknown job kind: {v}")
        return v

    @model_validator(mode='after')
    def validate_frame_type(self) -> 'QueueRequestInput':
        if self.kind == "frame" and self.frame_type not in ("start", "end"):
            raise ValueError("Frame jobs need frame_type 'start' or 'end'")
        if self.kind == "video":
            self.frame_type = None
        return self


__all__ = [
    "ProjectNameInput",
    "QueuePolicyInput",
    "ProviderSettingsInput",
    "QueueRequestInput",
]
