"""Shared fixtures for clawup tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from clawup.identity.models import DiscoveredIdentity, IdentityManifest
from clawup.manifest.models import AgentDefinition, DeploymentManifest


def identity_data(name: str = "pm", role: str | None = None, **overrides: Any) -> dict:
    """Minimal identity.yaml mapping in on-disk camelCase form."""
    data: dict[str, Any] = {
        "name": name,
        "displayName": name.title(),
        "role": role or name,
        "emoji": "",
        "description": f"{name} identity",
        "volumeSize": 30,
        "skills": [],
        "templateVars": [],
        "plugins": [],
        "deps": [],
    }
    data.update(overrides)
    return data


def write_identity(directory: Path, name: str = "pm", role: str | None = None, **overrides: Any) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    data = identity_data(name, role, **overrides)
    (directory / "identity.yaml").write_text(yaml.safe_dump(data, sort_keys=False))
    return directory


def make_identity(name: str = "pm", role: str | None = None, **overrides: Any) -> IdentityManifest:
    return IdentityManifest.model_validate(identity_data(name, role, **overrides))


def make_discovered(
    rel_path: str, name: str = "pm", role: str | None = None, **overrides: Any
) -> DiscoveredIdentity:
    return DiscoveredIdentity(rel_path=rel_path, manifest=make_identity(name, role, **overrides))


def make_agent(
    name: str = "agent-pm", role: str = "pm", identity: str = "./pm", **overrides: Any
) -> AgentDefinition:
    data: dict[str, Any] = {
        "name": name,
        "displayName": name.removeprefix("agent-").title(),
        "role": role,
        "identity": identity,
    }
    data.update(overrides)
    return AgentDefinition.model_validate(data)


def manifest_data(agents: list[dict] | None = None, **overrides: Any) -> dict:
    """Minimal clawup.yaml mapping in on-disk camelCase form."""
    data: dict[str, Any] = {
        "stackName": "dev",
        "provider": "aws",
        "region": "us-east-1",
        "instanceType": "t3.medium",
        "ownerProfile": {"name": "Ada", "timezone": "UTC", "workingHours": "9-17"},
        "templateVars": {},
        "agents": agents if agents is not None else [],
    }
    data.update(overrides)
    return data


def make_manifest(agents: list[AgentDefinition] | None = None, **overrides: Any) -> DeploymentManifest:
    data = manifest_data(**overrides)
    data["agents"] = [a.model_dump(by_alias=True, exclude_none=True) for a in agents or []]
    return DeploymentManifest.model_validate(data)


FULL_ENV = {
    "ANTHROPIC_API_KEY": "sk-ant-test",
    "TAILSCALE_AUTH_KEY": "tskey-auth-test",
    "TAILNET_DNS_NAME": "example.ts.net",
}


@pytest.fixture
def project(tmp_path: Path) -> Callable[..., Path]:
    """Factory: write clawup.yaml plus local identities under tmp_path."""

    def _make(
        agents: list[dict],
        identities: dict[str, dict] | None = None,
        **manifest_overrides: Any,
    ) -> Path:
        for rel, fields in (identities or {}).items():
            fields = dict(fields)
            write_identity(tmp_path / rel, fields.pop("name"), fields.pop("role", None), **fields)
        data = manifest_data(agents, **manifest_overrides)
        (tmp_path / "clawup.yaml").write_text(yaml.safe_dump(data, sort_keys=False))
        return tmp_path

    return _make
