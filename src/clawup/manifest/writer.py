"""Merge reconciliation results into the manifest and persist it with .env.example.

Merging is key-by-key: a prior persisted value always wins over a freshly
computed default, recursively for nested mappings. The manifest and its
secrets template are written as a pair: both land or neither does.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from clawup.errors import ManifestInvalidError
from clawup.identity.models import IdentityManifest
from clawup.manifest.models import MANIFEST_FILE, AgentDefinition, DeploymentManifest
from clawup.secrets.env import env_ref, parse_env_ref
from clawup.secrets.registry import PLUGIN_REGISTRY, PluginRegistryEntry

if TYPE_CHECKING:
    from clawup.reconcile.matcher import MatchResult
    from clawup.secrets.resolver import SecretsResolution
    from clawup.templates import TemplateVarResolution

logger = logging.getLogger(__name__)

ENV_EXAMPLE_FILE = ".env.example"
ENV_EXAMPLE_HEADER = "# Generated by clawup from clawup.yaml. Copy to .env and fill in the values."


@dataclass
class WriteResult:
    manifest_path: Path
    env_example_path: Path
    changed: bool


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def merge_prior(defaults: Mapping[str, Any], prior: Mapping[str, Any]) -> dict[str, Any]:
    """Layer *prior* over *defaults* key by key. Prior values win; nested mappings merge."""
    merged: dict[str, Any] = _plain(defaults)
    for key, value in prior.items():
        base = merged.get(key)
        if isinstance(base, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_prior(base, value)
        else:
            merged[key] = _plain(value)
    return merged


def plugin_config(
    plugin_name: str,
    agent: AgentDefinition,
    identity: IdentityManifest,
    plugins: Mapping[str, PluginRegistryEntry] = PLUGIN_REGISTRY,
) -> dict[str, Any]:
    """Registry default -> identity pluginDefaults -> prior manifest value."""
    entry = plugins.get(plugin_name)
    config = merge_prior(
        entry.default_config if entry else {},
        identity.plugin_defaults.get(plugin_name, {}),
    )
    config.setdefault("agentId", agent.name)
    prior = (agent.plugins or {}).get(plugin_name, {})
    return merge_prior(config, prior)


def _secret_refs(env_vars: Mapping[str, str]) -> dict[str, str]:
    return {key: env_ref(name) for key, name in env_vars.items()}


def apply_reconciliation(
    manifest: DeploymentManifest,
    match: MatchResult,
    secrets: SecretsResolution,
    template_vars: TemplateVarResolution,
    *,
    plugins: Mapping[str, PluginRegistryEntry] = PLUGIN_REGISTRY,
) -> DeploymentManifest:
    """Return a new manifest carrying the match, secret and template results."""
    updated = manifest.model_copy(deep=True)
    matched = {m.agent.name: m.discovered for m in match.matched}

    agents: list[AgentDefinition] = []
    for agent in updated.agents:
        changes: dict[str, Any] = {}
        discovered = matched.get(agent.name)
        if discovered is not None:
            if agent.identity != discovered.rel_path:
                logger.info(f"Agent {agent.name}: identity moved {agent.identity} -> {discovered.rel_path}")
            changes["identity"] = discovered.rel_path
            fresh_plugins = {
                name: plugin_config(name, agent, discovered.manifest, plugins)
                for name in discovered.manifest.plugins
            }
            merged_plugins = merge_prior(fresh_plugins, agent.plugins or {})
            changes["plugins"] = merged_plugins or None

        merged_secrets = merge_prior(
            _secret_refs(secrets.per_agent.get(agent.name, {})), agent.secrets or {}
        )
        changes["secrets"] = merged_secrets or None
        agents.append(agent.model_copy(update=changes))

    return updated.model_copy(
        update={
            "agents": agents,
            "secrets": merge_prior(_secret_refs(secrets.global_secrets), updated.secrets),
            "template_vars": dict(template_vars.persisted),
        }
    )


def render_env_example(manifest: DeploymentManifest) -> str:
    """Every referenced env var name, grouped by scope, without values."""
    seen: set[str] = set()

    def _names(secrets: Mapping[str, str] | None) -> list[str]:
        names = []
        for value in (secrets or {}).values():
            name = parse_env_ref(value)
            if name and name not in seen:
                seen.add(name)
                names.append(name)
        return names

    lines = [ENV_EXAMPLE_HEADER, "", "# Global"]
    lines.extend(f"{name}=" for name in _names(manifest.secrets))
    for agent in manifest.agents:
        names = _names(agent.secrets)
        if not names:
            continue
        lines.extend(["", f"# Agent: {agent.display_name} ({agent.name}, role {agent.role})"])
        lines.extend(f"{name}=" for name in names)
    return "\n".join(lines) + "\n"


def referenced_env_vars(manifest: DeploymentManifest) -> list[str]:
    refs = [parse_env_ref(v) for v in manifest.secrets.values()]
    for agent in manifest.agents:
        refs.extend(parse_env_ref(v) for v in (agent.secrets or {}).values())
    return [r for r in dict.fromkeys(refs) if r]


def check_bundle_consistency(manifest: DeploymentManifest, env_example: str) -> list[str]:
    """Problems where a manifest secret reference has no .env.example entry."""
    declared = {
        line.partition("=")[0].strip()
        for line in env_example.splitlines()
        if line.strip() and not line.lstrip().startswith("#") and "=" in line
    }
    return [
        f"{name}: referenced in the manifest but missing from {ENV_EXAMPLE_FILE}"
        for name in referenced_env_vars(manifest)
        if name not in declared
    ]


def dump_manifest(manifest: DeploymentManifest) -> str:
    return yaml.safe_dump(
        manifest.to_document(),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def _stage(path: Path, content: str) -> Path:
    """Write content to a temp file beside *path*; return the temp path."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
    except BaseException:
        os.unlink(tmp)
        raise
    return Path(tmp)


def _atomic_write_pair(files: list[tuple[Path, str]]) -> None:
    """Replace every file or none. Already-replaced files are restored on failure."""
    staged: list[tuple[Path, Path]] = []
    try:
        for path, content in files:
            staged.append((_stage(path, content), path))
        backups = {path: (path.read_bytes() if path.exists() else None) for _, path in staged}
        replaced: list[Path] = []
        try:
            for tmp, path in staged:
                os.replace(tmp, path)
                replaced.append(path)
        except BaseException:
            for path in replaced:
                original = backups[path]
                if original is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(original)
            raise
    finally:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)


def write_manifest_bundle(
    manifest: DeploymentManifest,
    root: Path,
    *,
    manifest_file: str = MANIFEST_FILE,
    env_example_file: str = ENV_EXAMPLE_FILE,
) -> WriteResult:
    """Persist clawup.yaml and .env.example together."""
    manifest_path = root / manifest_file
    env_path = root / env_example_file
    manifest_text = dump_manifest(manifest)
    env_text = render_env_example(manifest)

    problems = check_bundle_consistency(manifest, env_text)
    if problems:
        raise ManifestInvalidError(str(env_path), problems)

    changed = not (
        manifest_path.is_file()
        and env_path.is_file()
        and manifest_path.read_text(encoding="utf-8") == manifest_text
        and env_path.read_text(encoding="utf-8") == env_text
    )
    if changed:
        _atomic_write_pair([(manifest_path, manifest_text), (env_path, env_text)])
        logger.info(f"Wrote {manifest_path} and {env_path}")
    else:
        logger.debug(f"{manifest_path} already up to date")
    return WriteResult(manifest_path, env_path, changed)
