"""Pydantic models for the persisted deployment manifest (clawup.yaml)."""

from __future__ import annotations

from collections import Counter
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clawup.identity.models import Slug

MANIFEST_FILE = "clawup.yaml"


class Provider(StrEnum):
    AWS = "aws"
    HETZNER = "hetzner"
    LOCAL = "local"


class _ManifestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class OwnerProfile(_ManifestModel):
    name: str = Field(min_length=1)
    timezone: str | None = None
    working_hours: str | None = None
    notes: str | None = None


class AgentDefinition(_ManifestModel):
    name: Slug
    display_name: str = Field(min_length=1)
    role: Slug
    identity: str = Field(min_length=1)
    identity_version: str | None = None
    volume_size: int = Field(default=30, ge=8, le=500)
    instance_type: str | None = None
    secrets: dict[str, str] | None = None
    plugins: dict[str, dict[str, Any]] | None = None
    env_vars: dict[str, str] | None = None


class DeploymentManifest(_ManifestModel):
    stack_name: str = Field(min_length=1)
    organization: str | None = None
    provider: Provider
    region: str = Field(min_length=1)
    instance_type: str = Field(min_length=1)
    owner_profile: OwnerProfile
    template_vars: dict[str, str] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict)
    agents: list[AgentDefinition] = Field(default_factory=list)

    @field_validator("agents")
    @classmethod
    def _unique_agent_names(cls, agents: list[AgentDefinition]) -> list[AgentDefinition]:
        counts = Counter(a.name for a in agents)
        dupes = sorted(name for name, n in counts.items() if n > 1)
        if dupes:
            raise ValueError(f"duplicate agent names: {', '.join(dupes)}")
        return agents

    def agent(self, name: str) -> AgentDefinition | None:
        return next((a for a in self.agents if a.name == name), None)

    def to_document(self) -> dict[str, Any]:
        """Plain camelCase mapping ready for YAML serialization."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
