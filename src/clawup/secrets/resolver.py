"""Derive required secrets for a fleet and resolve their values.

Global keys (shared infrastructure, global-scope dependencies) are emitted
once under SCREAMING_SNAKE names. Agent keys are namespaced by role so two
agents using the same plugin never collide. A key covered by a plugin or
dependency registry mapping is never emitted a second time through the
identity's generic requiredSecrets list.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from clawup.errors import MissingSecretError
from clawup.identity.models import DiscoveredIdentity, IdentityManifest
from clawup.manifest.models import AgentDefinition, DeploymentManifest
from clawup.reconcile.matcher import reconcile
from clawup.secrets.env import agent_env_var_name, global_env_var_name, parse_env_ref
from clawup.secrets.registry import (
    DEP_REGISTRY,
    PLUGIN_REGISTRY,
    DependencyRegistryEntry,
    PluginRegistryEntry,
    SecretScope,
    SecretSpec,
    infra_secrets,
)
from clawup.secrets.validators import VALIDATORS, SecretValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretRequirement:
    key: str
    scope: SecretScope
    env_var: str
    agent: str | None = None
    optional: bool = False
    validator: SecretValidator | None = None
    literal: str | None = None  # prior manifest value that is not an ${env:...} reference


@dataclass(frozen=True)
class MissingSecret:
    key: str
    env_var: str
    agent: str | None = None


@dataclass
class SecretsResolution:
    global_secrets: dict[str, str] = field(default_factory=dict)
    per_agent: dict[str, dict[str, str]] = field(default_factory=dict)
    requirements: list[SecretRequirement] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)
    missing: list[MissingSecret] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def env_vars(self) -> list[str]:
        """Every expected environment variable name, in requirement order."""
        seen: dict[str, None] = {}
        for req in self.requirements:
            if req.literal is None:
                seen.setdefault(req.env_var, None)
        return list(seen)


class SecretsResolver:
    """Aggregate secret requirements from identities and registries."""

    def __init__(
        self,
        plugins: Mapping[str, PluginRegistryEntry] = PLUGIN_REGISTRY,
        deps: Mapping[str, DependencyRegistryEntry] = DEP_REGISTRY,
        validators: Mapping[str, SecretValidator] = VALIDATORS,
    ) -> None:
        self._plugins = plugins
        self._deps = deps
        self._validators = validators

    def registry_specs(self, identity: IdentityManifest) -> list[SecretSpec]:
        """Secret specs contributed by the identity's plugins and deps."""
        specs: list[SecretSpec] = []
        for name in identity.plugins:
            plugin = self._plugins.get(name)
            if plugin is None:
                logger.warning(f"Identity {identity.name!r} enables unknown plugin {name!r}")
                continue
            specs.extend(plugin.secrets)
        for name in identity.deps:
            dep = self._deps.get(name)
            if dep is None:
                logger.warning(f"Identity {identity.name!r} declares unknown dependency {name!r}")
                continue
            specs.extend(dep.secrets)
        return specs

    def requirements(
        self,
        manifest: DeploymentManifest,
        identities: Mapping[str, IdentityManifest],
    ) -> list[SecretRequirement]:
        """All requirements for *manifest*; *identities* maps agent name -> identity."""
        specs_by_agent = {
            agent.name: self.registry_specs(identities[agent.name])
            for agent in manifest.agents
            if agent.name in identities
        }
        global_specs: dict[str, SecretSpec] = {}
        for spec in infra_secrets(manifest.provider):
            global_specs.setdefault(spec.key, spec)
        for specs in specs_by_agent.values():
            for spec in specs:
                if spec.scope == SecretScope.GLOBAL:
                    global_specs.setdefault(spec.key, spec)

        reqs: list[SecretRequirement] = []
        for key, spec in global_specs.items():
            prior = manifest.secrets.get(key)
            reqs.append(self._requirement(key, SecretScope.GLOBAL, prior, spec.optional))
        for key, prior in manifest.secrets.items():
            if key not in global_specs:
                reqs.append(self._requirement(key, SecretScope.GLOBAL, prior, False))

        global_keys = set(global_specs) | set(manifest.secrets)
        for agent in manifest.agents:
            reqs.extend(
                self._agent_requirements(
                    agent,
                    identities.get(agent.name),
                    specs_by_agent.get(agent.name, []),
                    global_keys,
                )
            )
        return reqs

    def _agent_requirements(
        self,
        agent: AgentDefinition,
        identity: IdentityManifest | None,
        specs: list[SecretSpec],
        global_keys: set[str],
    ) -> list[SecretRequirement]:
        prior = agent.secrets or {}
        keys: dict[str, bool] = {}
        if identity is not None:
            for spec in specs:
                if spec.scope == SecretScope.AGENT:
                    keys.setdefault(spec.key, spec.optional)
            for key in identity.required_secrets:
                if key in keys or key in global_keys:
                    continue
                keys[key] = False
        for key in prior:
            keys.setdefault(key, False)
        return [
            self._requirement(key, SecretScope.AGENT, prior.get(key), optional, agent=agent)
            for key, optional in keys.items()
        ]

    def _requirement(
        self,
        key: str,
        scope: SecretScope,
        prior: str | None,
        optional: bool,
        *,
        agent: AgentDefinition | None = None,
    ) -> SecretRequirement:
        ref_name = parse_env_ref(prior)
        if ref_name:
            env_var = ref_name
        elif agent is not None:
            env_var = agent_env_var_name(agent.role, key)
        else:
            env_var = global_env_var_name(key)
        return SecretRequirement(
            key=key,
            scope=scope,
            env_var=env_var,
            agent=agent.name if agent is not None else None,
            optional=optional,
            validator=self._validators.get(key),
            literal=prior if prior and ref_name is None else None,
        )

    def resolve(
        self,
        manifest: DeploymentManifest,
        identities: Mapping[str, IdentityManifest],
        env: Mapping[str, str] | None = None,
    ) -> SecretsResolution:
        """Build the key -> env var maps and look values up in *env*."""
        env = env or {}
        result = SecretsResolution()
        for agent in manifest.agents:
            result.per_agent[agent.name] = {}

        for req in self.requirements(manifest, identities):
            result.requirements.append(req)
            if req.agent is None:
                result.global_secrets[req.key] = req.env_var
            else:
                result.per_agent[req.agent][req.key] = req.env_var

            value = req.literal if req.literal is not None else env.get(req.env_var)
            if not value:
                if not req.optional:
                    result.missing.append(MissingSecret(req.key, req.env_var, req.agent))
                continue
            result.values[req.env_var] = value
            if req.validator is not None:
                warning = req.validator(value)
                if warning:
                    owner = f" (agent {req.agent})" if req.agent else ""
                    message = f"{req.env_var}{owner}: {warning}"
                    logger.warning(message)
                    result.warnings.append(message)
        return result


def identities_by_agent(
    agents: Sequence[AgentDefinition],
    discovered: Sequence[DiscoveredIdentity],
) -> dict[str, IdentityManifest]:
    """Agent name -> identity manifest via the tiered matcher.

    For a scanned set of identities. Agents read from their own sources are
    paired by pipeline.match_agent_sources instead.
    """
    return {m.agent.name: m.discovered.manifest for m in reconcile(agents, discovered).matched}


def resolve_secrets(
    manifest: DeploymentManifest,
    discovered: Sequence[DiscoveredIdentity],
    env: Mapping[str, str] | None = None,
    *,
    resolver: SecretsResolver | None = None,
) -> SecretsResolution:
    resolver = resolver or SecretsResolver()
    return resolver.resolve(manifest, identities_by_agent(manifest.agents, discovered), env)


def require_secrets(resolution: SecretsResolution, *, env_file: str = ".env") -> None:
    """Raise one MissingSecretError naming every unresolved secret."""
    if resolution.missing:
        raise MissingSecretError(resolution.missing, env_file=env_file)
