"""Parse identity reference strings into IdentitySource descriptors.

Accepted forms:
  /abs/path, ./rel/path, ../rel/path, rel/path, ~/path     local directory
  https://host/org/repo[#subfolder]                         git remote (also http, ssh, git, file)
  git@host:org/repo[#subfolder]                             scp-style git remote

The version pin is never part of the string; it is passed alongside.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from clawup.errors import InvalidSourceError
from clawup.identity.models import IdentitySource, SourceKind

REMOTE_SCHEMES = frozenset({"https", "http", "ssh", "git", "file"})

_SCP_RE = re.compile(r"^[A-Za-z0-9_.-]+@[A-Za-z0-9_.-]+:(?!//)[^\s]+$")
_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*)://")


def parse_source(reference: str, version: str | None = None) -> IdentitySource:
    """Parse *reference* (plus optional version pin) into an IdentitySource.

    Raises InvalidSourceError when the string matches neither form.
    """
    if not reference or not reference.strip():
        raise InvalidSourceError(reference, "reference is empty")
    if reference != reference.strip():
        raise InvalidSourceError(reference, "reference has leading or trailing whitespace")
    if "\x00" in reference:
        raise InvalidSourceError(reference, "reference contains a NUL byte")
    if version is not None and not version.strip():
        raise InvalidSourceError(reference, "version pin is empty")

    if _SCHEME_RE.match(reference) or _SCP_RE.match(reference.partition("#")[0]):
        return _parse_remote(reference, version)

    if "#" in reference:
        raise InvalidSourceError(
            reference, "subfolder fragments are only supported on git remotes"
        )
    if version is not None:
        raise InvalidSourceError(reference, "version pins are only supported on git remotes")
    return IdentitySource(kind=SourceKind.LOCAL, location=reference)


def _parse_remote(reference: str, version: str | None) -> IdentitySource:
    location, sep, fragment = reference.partition("#")
    if sep and not fragment.strip("/"):
        raise InvalidSourceError(reference, "subfolder after '#' is empty")
    if "#" in fragment:
        raise InvalidSourceError(reference, "more than one '#' fragment")

    scheme_match = _SCHEME_RE.match(location)
    if scheme_match:
        scheme = scheme_match.group(1).lower()
        if scheme not in REMOTE_SCHEMES:
            raise InvalidSourceError(reference, f"unsupported scheme {scheme!r}")
        parts = urlsplit(location)
        if scheme != "file" and not parts.netloc:
            raise InvalidSourceError(reference, "remote URL has no host")
        if not parts.path.strip("/"):
            raise InvalidSourceError(reference, "remote URL has no repository path")
    elif not _SCP_RE.match(location):
        raise InvalidSourceError(reference, "malformed scp-style remote")

    return IdentitySource(
        kind=SourceKind.REMOTE,
        location=location,
        subfolder=fragment or None,
        version_ref=version,
    )


def format_source(source: IdentitySource) -> str:
    """Inverse of parse_source (the version pin is carried separately)."""
    if source.subfolder:
        return f"{source.location}#{source.subfolder}"
    return source.location


def is_remote_reference(reference: str) -> bool:
    """True when *reference* looks like a git remote (no validation)."""
    return bool(_SCHEME_RE.match(reference) or _SCP_RE.match(reference.partition("#")[0]))


def normalize_location(location: str) -> str:
    """Canonical form of a remote location used for cache keys."""
    loc = location.strip().rstrip("/")
    if loc.endswith(".git"):
        loc = loc[: -len(".git")]
    scheme_match = _SCHEME_RE.match(loc)
    if scheme_match:
        parts = urlsplit(loc)
        netloc = parts.netloc.lower()
        return f"{parts.scheme.lower()}://{netloc}{parts.path}"
    user_host, _, path = loc.partition(":")
    return f"{user_host.lower()}:{path}"
