"""Pydantic models for identity sources and identity manifests."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]*$"
TEMPLATE_VAR_PATTERN = r"^[A-Z][A-Z0-9_]*$"

Slug = Annotated[str, StringConstraints(pattern=SLUG_PATTERN)]
TemplateVarName = Annotated[str, StringConstraints(pattern=TEMPLATE_VAR_PATTERN)]


class SourceKind(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class IdentitySource(BaseModel):
    """Parsed identity reference. Immutable."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    location: str
    subfolder: str | None = None
    version_ref: str | None = None

    @property
    def is_remote(self) -> bool:
        return self.kind == SourceKind.REMOTE


class IdentityManifest(BaseModel):
    """Contents of an identity's identity.yaml."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: Slug
    display_name: str = Field(min_length=1)
    role: Slug
    emoji: str = ""
    description: str = ""
    volume_size: int = Field(default=30, ge=8, le=500)
    skills: list[str] = Field(default_factory=list)
    template_vars: list[TemplateVarName] = Field(default_factory=list)
    model: str | None = None
    deps: list[str] = Field(default_factory=list)
    plugins: list[str] = Field(default_factory=list)
    plugin_defaults: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required_secrets: list[str] = Field(default_factory=list)


class DiscoveredIdentity(BaseModel):
    """One fetched identity, addressed by the path it was discovered at."""

    model_config = ConfigDict(frozen=True)

    rel_path: str
    manifest: IdentityManifest
    local_dir: Path | None = None
