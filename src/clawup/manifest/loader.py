"""Load, validate and locate the deployment manifest."""

from __future__ import annotations

import os
from collections import Counter
from pathlib import Path

from pydantic import ValidationError

from clawup.errors import ManifestInvalidError
from clawup.identity.loader import format_issues, read_yaml_mapping
from clawup.identity.source import is_remote_reference
from clawup.manifest.models import MANIFEST_FILE, DeploymentManifest


def _duplicate_agent_names(data: dict) -> list[str]:
    """Names used by more than one raw agent entry, before field validation."""
    agents = data.get("agents")
    if not isinstance(agents, list):
        return []
    names = Counter(
        entry["name"]
        for entry in agents
        if isinstance(entry, dict) and isinstance(entry.get("name"), str)
    )
    return sorted(name for name, n in names.items() if n > 1)


def validate_manifest(data: dict, *, path: str = MANIFEST_FILE) -> DeploymentManifest:
    """Validate an already-parsed manifest mapping.

    Raises ManifestInvalidError listing every violated constraint. Duplicate
    agent names are reported even when other agent fields fail validation.
    """
    try:
        return DeploymentManifest.model_validate(data)
    except ValidationError as e:
        issues = format_issues(e)
        dupes = _duplicate_agent_names(data)
        if dupes and not any("duplicate agent names" in issue for issue in issues):
            issues.append(f"agents: duplicate agent names: {', '.join(dupes)}")
        raise ManifestInvalidError(path, issues) from e


def load_manifest(path: Path) -> DeploymentManifest:
    """Read and validate clawup.yaml at *path*."""
    if not path.is_file():
        raise ManifestInvalidError(
            str(path), [f"<root>: {path.name} not found at {path.parent}"]
        )
    return validate_manifest(read_yaml_mapping(path), path=str(path))


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) to the directory holding clawup.yaml."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / MANIFEST_FILE).is_file():
            return candidate
    return None


def resolve_identity_path(identity: str, project_root: Path) -> str:
    """Make a relative local identity path absolute. Remote references pass through."""
    if is_remote_reference(identity):
        return identity
    path = Path(identity).expanduser()
    if path.is_absolute():
        return identity
    return os.path.normpath(project_root / path)


def resolve_identity_paths(manifest: DeploymentManifest, project_root: Path) -> DeploymentManifest:
    """Copy of *manifest* with relative identity paths resolved against *project_root*."""
    agents = [
        a.model_copy(update={"identity": resolve_identity_path(a.identity, project_root)})
        for a in manifest.agents
    ]
    return manifest.model_copy(update={"agents": agents})
