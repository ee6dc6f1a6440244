"""Read and validate identity.yaml files."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from clawup.errors import ManifestInvalidError, NotFoundError
from clawup.identity.models import DiscoveredIdentity, IdentityManifest

IDENTITY_FILE = "identity.yaml"


def format_issues(exc: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into 'field.path: message' strings."""
    issues: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        issues.append(f"{loc}: {err['msg']}")
    return issues


def read_yaml_mapping(path: Path) -> dict:
    """Parse a YAML file that must hold a mapping. Raises ManifestInvalidError."""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestInvalidError(str(path), [f"<root>: not valid UTF-8 ({e})"]) from e
    except OSError as e:
        raise ManifestInvalidError(str(path), [f"<root>: cannot be read ({e})"]) from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestInvalidError(str(path), [f"<root>: not valid YAML ({e})"]) from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestInvalidError(
            str(path), [f"<root>: expected a mapping, got {type(data).__name__}"]
        )
    return data


def load_identity_manifest(directory: Path, *, source_label: str | None = None) -> IdentityManifest:
    """Load <directory>/identity.yaml.

    Raises NotFoundError when the directory or file is absent and
    ManifestInvalidError listing every schema problem otherwise.
    """
    label = source_label or str(directory)
    if not directory.is_dir():
        raise NotFoundError(label, f"directory {directory} does not exist")
    path = directory / IDENTITY_FILE
    if not path.is_file():
        raise NotFoundError(label, f"{IDENTITY_FILE} not found in {directory}")

    data = read_yaml_mapping(path)
    try:
        return IdentityManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestInvalidError(str(path), format_issues(e)) from e


def discover_identities(root: Path, *, prefix: str = "./") -> list[DiscoveredIdentity]:
    """Scan immediate subdirectories of *root* holding an identity.yaml.

    rel_path of each result is ``prefix + <subdir name>``. Results are in
    directory-name order.
    """
    if not root.is_dir():
        raise NotFoundError(str(root), f"directory {root} does not exist")

    found: list[DiscoveredIdentity] = []
    for sub in sorted(root.iterdir()):
        if not sub.is_dir() or sub.name.startswith("."):
            continue
        if not (sub / IDENTITY_FILE).is_file():
            continue
        manifest = load_identity_manifest(sub)
        found.append(
            DiscoveredIdentity(rel_path=f"{prefix}{sub.name}", manifest=manifest, local_dir=sub)
        )
    return found
