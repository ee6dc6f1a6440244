"""Identity sources: parsing, fetching, caching and validation."""

from clawup.identity.cache import IdentityCache, resolve_identity
from clawup.identity.loader import (
    IDENTITY_FILE,
    discover_identities,
    load_identity_manifest,
)
from clawup.identity.models import (
    DiscoveredIdentity,
    IdentityManifest,
    IdentitySource,
    SourceKind,
)
from clawup.identity.source import format_source, is_remote_reference, parse_source

__all__ = [
    "IDENTITY_FILE",
    "DiscoveredIdentity",
    "IdentityCache",
    "IdentityManifest",
    "IdentitySource",
    "SourceKind",
    "discover_identities",
    "format_source",
    "is_remote_reference",
    "load_identity_manifest",
    "parse_source",
    "resolve_identity",
]
