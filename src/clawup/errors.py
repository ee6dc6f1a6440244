"""Error taxonomy shared by identity fetching and manifest reconciliation."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clawup.secrets.resolver import MissingSecret


class ClawupError(Exception):
    """Base error. Every subclass carries a remediation hint."""

    remediation: str = ""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        if remediation is not None:
            self.remediation = remediation
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.remediation:
            return f"{self.message}\n  -> {self.remediation}"
        return self.message


class InvalidSourceError(ClawupError):
    """Reference string is neither a filesystem path nor a git remote."""

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        super().__init__(
            f"Invalid identity source {reference!r}: {reason}",
            remediation=(
                "Use a local path (./identities/pm) or a git URL "
                "(https://github.com/org/repo#subfolder)."
            ),
        )


class FetchError(ClawupError):
    """Resolving an identity source failed."""

    retryable = False

    def __init__(self, source: str, detail: str, *, remediation: str) -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"Failed to fetch identity {source!r}: {detail}", remediation=remediation)


class NetworkError(FetchError):
    """Transient failure talking to the remote. Safe to retry."""

    retryable = True

    def __init__(self, source: str, detail: str) -> None:
        super().__init__(
            source,
            detail,
            remediation="Check network access to the remote and run the command again.",
        )


class NotFoundError(FetchError):
    """Ref, repository, subfolder or identity manifest does not exist."""

    def __init__(self, source: str, detail: str) -> None:
        super().__init__(
            source,
            detail,
            remediation="Verify the identity source, subfolder and version pin.",
        )


class ManifestInvalidError(ClawupError):
    """A manifest failed schema validation. Carries every field issue."""

    def __init__(self, path: str, issues: Iterable[str]) -> None:
        self.path = path
        self.issues = list(issues)
        lines = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(
            f"Invalid manifest {path} ({len(self.issues)} issue(s)):\n{lines}",
            remediation=f"Fix the fields listed above in {path}.",
        )


class MissingSecretError(ClawupError):
    """Raised once with every required secret that has no value."""

    def __init__(self, missing: list[MissingSecret], env_file: str = ".env") -> None:
        self.missing = list(missing)
        lines = []
        for m in self.missing:
            owner = f"agent {m.agent}" if m.agent else "global"
            lines.append(f"  {m.env_var:<30} {m.key} ({owner})")
        super().__init__(
            f"Missing {len(self.missing)} secret(s):\n" + "\n".join(lines),
            remediation=f"Fill these in {env_file}, then run the command again.",
        )


class MissingTemplateVarError(ClawupError):
    """Raised once with every template variable left without a value."""

    def __init__(self, names: list[str], manifest_file: str = "clawup.yaml") -> None:
        self.names = list(names)
        super().__init__(
            "Missing template variables: " + ", ".join(self.names),
            remediation=(
                f"Add them to the templateVars section of {manifest_file} "
                "or pass --var NAME=VALUE."
            ),
        )
