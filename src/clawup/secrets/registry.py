"""Static plugin and dependency registries.

Each entry lists the secrets the plugin/dependency needs and the default
configuration it contributes. Tables are read-only; callers inject their
own tables to extend them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from clawup.manifest.models import Provider


class SecretScope(StrEnum):
    GLOBAL = "global"
    AGENT = "agent"


@dataclass(frozen=True)
class SecretSpec:
    key: str  # camelCase key used in the manifest
    runtime_env_var: str  # variable name inside the agent runtime
    scope: SecretScope = SecretScope.AGENT
    optional: bool = False


@dataclass(frozen=True)
class PluginRegistryEntry:
    secrets: tuple[SecretSpec, ...] = ()
    installable: bool = True
    needs_funnel: bool = False
    # Lowest-priority plugin config. "$AGENT_NAME" style keys are expanded at runtime.
    default_config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class DependencyRegistryEntry:
    secrets: tuple[SecretSpec, ...] = ()
    description: str = ""


PLUGIN_REGISTRY: Mapping[str, PluginRegistryEntry] = MappingProxyType(
    {
        "openclaw-linear": PluginRegistryEntry(
            secrets=(
                SecretSpec("linearApiKey", "LINEAR_API_KEY"),
                SecretSpec("linearWebhookSecret", "LINEAR_WEBHOOK_SECRET"),
            ),
            installable=True,
            needs_funnel=True,
            default_config=MappingProxyType({"agentMapping": {"$AGENT_NAME": "default"}}),
        ),
        "slack": PluginRegistryEntry(
            secrets=(
                SecretSpec("slackBotToken", "SLACK_BOT_TOKEN"),
                SecretSpec("slackAppToken", "SLACK_APP_TOKEN"),
            ),
            installable=False,
        ),
    }
)

DEP_REGISTRY: Mapping[str, DependencyRegistryEntry] = MappingProxyType(
    {
        "gh": DependencyRegistryEntry(
            secrets=(SecretSpec("githubToken", "GITHUB_TOKEN"),),
            description="GitHub CLI",
        ),
        "brave-search": DependencyRegistryEntry(
            secrets=(SecretSpec("braveApiKey", "BRAVE_API_KEY", scope=SecretScope.GLOBAL),),
            description="Brave Search",
        ),
    }
)

_SHARED_INFRA: tuple[SecretSpec, ...] = (
    SecretSpec("anthropicApiKey", "ANTHROPIC_API_KEY", scope=SecretScope.GLOBAL),
    SecretSpec("tailscaleAuthKey", "TAILSCALE_AUTH_KEY", scope=SecretScope.GLOBAL),
    SecretSpec("tailnetDnsName", "TAILNET_DNS_NAME", scope=SecretScope.GLOBAL),
    SecretSpec("tailscaleApiKey", "TAILSCALE_API_KEY", scope=SecretScope.GLOBAL, optional=True),
)

_PROVIDER_INFRA: Mapping[Provider, tuple[SecretSpec, ...]] = MappingProxyType(
    {
        Provider.AWS: (),
        Provider.HETZNER: (SecretSpec("hcloudToken", "HCLOUD_TOKEN", scope=SecretScope.GLOBAL),),
        Provider.LOCAL: (),
    }
)


def infra_secrets(provider: Provider) -> tuple[SecretSpec, ...]:
    """Fleet-wide infrastructure credentials for *provider*."""
    return _SHARED_INFRA + _PROVIDER_INFRA.get(provider, ())
