"""Format checks for resolved secret values. Failures are warnings, not errors."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class SecretValidator:
    hint: str
    prefixes: tuple[str, ...] = ()
    suffix: str | None = None

    def __call__(self, value: str) -> str | None:
        """Return a warning message, or None when the value looks right."""
        if self.prefixes and not value.startswith(self.prefixes):
            return self.hint
        if self.suffix and not value.endswith(self.suffix):
            return self.hint
        return None


VALIDATORS: Mapping[str, SecretValidator] = MappingProxyType(
    {
        "anthropicApiKey": SecretValidator("must start with sk-ant-", prefixes=("sk-ant-",)),
        "tailscaleAuthKey": SecretValidator(
            "must start with tskey-auth-", prefixes=("tskey-auth-",)
        ),
        "tailnetDnsName": SecretValidator("must end with .ts.net", suffix=".ts.net"),
        "slackBotToken": SecretValidator("must start with xoxb-", prefixes=("xoxb-",)),
        "slackAppToken": SecretValidator("must start with xapp-", prefixes=("xapp-",)),
        "linearApiKey": SecretValidator("must start with lin_api_", prefixes=("lin_api_",)),
        "githubToken": SecretValidator(
            "must start with ghp_ or github_pat_", prefixes=("ghp_", "github_pat_")
        ),
    }
)
