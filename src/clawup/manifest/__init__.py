"""Deployment manifest: schema, loading and validation.

The writer lives in clawup.manifest.writer and is imported explicitly.
"""

from clawup.manifest.loader import (
    find_project_root,
    load_manifest,
    resolve_identity_paths,
    validate_manifest,
)
from clawup.manifest.models import (
    MANIFEST_FILE,
    AgentDefinition,
    DeploymentManifest,
    OwnerProfile,
    Provider,
)

__all__ = [
    "MANIFEST_FILE",
    "AgentDefinition",
    "DeploymentManifest",
    "OwnerProfile",
    "Provider",
    "find_project_root",
    "load_manifest",
    "resolve_identity_paths",
    "validate_manifest",
]
