"""Identity fetcher with an on-disk cache for git remotes.

All git calls go through _run_git(), which is the single mock target in tests.
Each remote (location, subfolder) pair gets its own cache entry and its own
lock, so concurrent fetches of one key are serialized while distinct keys
run in parallel.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import subprocess
import threading
from pathlib import Path

from clawup.errors import FetchError, NetworkError, NotFoundError
from clawup.identity.loader import load_identity_manifest
from clawup.identity.models import IdentityManifest, IdentitySource
from clawup.identity.source import format_source, normalize_location, parse_source

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 60.0

_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")

_NOT_FOUND_MARKERS = (
    "couldn't find remote ref",
    "repository not found",
    "does not appear to be a git repository",
    "not our ref",
    "no such remote ref",
    "unknown revision",
    "does not exist",
    "returned error: 404",
)
_NETWORK_MARKERS = (
    "could not resolve host",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "operation timed out",
    "the remote end hung up",
    "early eof",
    "unable to access",
    "temporary failure in name resolution",
)
_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "permission denied",
)


class GitError(Exception):
    """Raised when git cannot be run at all."""


class GitTimeoutError(GitError):
    """Raised when a git command exceeds its timeout."""


def _run_git(
    args: list[str],
    *,
    cwd: str | Path | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    """Run a git command. Raises GitError when git is missing or times out."""
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=env,
        )
    except FileNotFoundError:
        raise GitError("git binary not found")
    except subprocess.TimeoutExpired:
        raise GitTimeoutError(f"git {args[0]} timed out after {timeout:g}s")


def _classify_failure(label: str, args: list[str], stderr: str) -> FetchError:
    detail = stderr.strip() or f"git {args[0]} failed"
    lowered = detail.lower()
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(label, detail)
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return NetworkError(label, detail)
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return FetchError(
            label,
            detail,
            remediation="Configure git credentials (SSH key or token) for this remote.",
        )
    return FetchError(label, detail, remediation="Run the git command by hand to inspect the failure.")


def _source_label(source: IdentitySource) -> str:
    label = format_source(source)
    if source.version_ref:
        label += f" @ {source.version_ref}"
    return label


class IdentityCache:
    """Resolve identity sources to (directory, manifest), caching git remotes."""

    def __init__(self, cache_dir: Path, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> None:
        self._cache_dir = cache_dir
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._checked_out: dict[str, str | None] = {}

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @staticmethod
    def cache_key(source: IdentitySource) -> str:
        subfolder = (source.subfolder or "").strip("/")
        return f"{normalize_location(source.location)}#{subfolder}"

    def entry_dir(self, source: IdentitySource) -> Path:
        """Convention: <cache_dir>/<repo-slug>-<short_hash>/"""
        key = self.cache_key(source)
        short_hash = hashlib.sha256(key.encode()).hexdigest()[:12]
        repo = normalize_location(source.location).rsplit("/", 1)[-1].rsplit(":", 1)[-1]
        slug = re.sub(r"[^a-z0-9]+", "-", repo.lower()).strip("-") or "identity"
        return self._cache_dir / f"{slug}-{short_hash}"

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def resolve(self, source: IdentitySource) -> tuple[Path, IdentityManifest]:
        directory = self.locate(source)
        return directory, load_identity_manifest(directory, source_label=_source_label(source))

    def locate(self, source: IdentitySource) -> Path:
        """Local directory holding the source's content, fetching remotes as needed."""
        label = _source_label(source)
        if not source.is_remote:
            directory = Path(source.location).expanduser()
            if not directory.is_dir():
                raise NotFoundError(label, f"directory {directory} does not exist")
            return directory

        key = self.cache_key(source)
        with self._lock_for(key):
            checkout = self._materialize(source, key, label)

        identity_dir = checkout
        if source.subfolder:
            identity_dir = (checkout / source.subfolder.strip("/")).resolve()
            if not identity_dir.is_relative_to(checkout.resolve()):
                raise NotFoundError(label, f"subfolder {source.subfolder!r} escapes the repository")
            if not identity_dir.is_dir():
                raise NotFoundError(label, f"subfolder {source.subfolder!r} not found in repository")
        return identity_dir

    def _materialize(self, source: IdentitySource, key: str, label: str) -> Path:
        entry = self.entry_dir(source)
        ref = source.version_ref
        marker = entry.parent / f"{entry.name}.ref"
        has_repo = (entry / ".git").is_dir()

        if key in self._checked_out and self._checked_out[key] == ref:
            logger.debug(f"Reusing cached identity checkout for {label}")
            return entry
        if has_repo and ref and _FULL_SHA_RE.match(ref) and _read_marker(marker) == ref:
            logger.debug(f"Cached checkout of {label} already at pinned commit")
            self._checked_out[key] = ref
            return entry

        if not has_repo:
            entry.mkdir(parents=True, exist_ok=True)
            self._git(label, ["init", "--quiet"], cwd=entry)
            self._git(label, ["remote", "add", "origin", source.location], cwd=entry)
        else:
            self._git(label, ["remote", "set-url", "origin", source.location], cwd=entry)

        logger.info(f"Fetching identity {label}")
        self._git(label, ["fetch", "--depth", "1", "origin", ref or "HEAD"], cwd=entry)
        self._git(label, ["checkout", "--force", "--quiet", "FETCH_HEAD"], cwd=entry)
        marker.write_text(ref or "", encoding="utf-8")
        self._checked_out[key] = ref
        return entry

    def _git(self, label: str, args: list[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        try:
            result = _run_git(args, cwd=cwd, timeout=self._timeout)
        except GitTimeoutError as e:
            raise NetworkError(label, str(e)) from e
        except GitError as e:
            raise FetchError(label, str(e), remediation="Install git and make sure it is on PATH.") from e
        if result.returncode != 0:
            raise _classify_failure(label, args, result.stderr)
        return result


def _read_marker(marker: Path) -> str | None:
    try:
        return marker.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


def resolve_identity(
    source: IdentitySource | str,
    cache: IdentityCache,
    *,
    version: str | None = None,
) -> tuple[IdentityManifest, Path]:
    """Resolve a source (or reference string) to its manifest and local directory."""
    if isinstance(source, str):
        source = parse_source(source, version)
    directory, manifest = cache.resolve(source)
    return manifest, directory
