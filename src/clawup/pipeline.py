"""End-to-end reconciliation: load, fetch, match, resolve, apply, write.

Identity fetches run concurrently. Every fetch finishes (or fails) before
anything is matched, and nothing is written unless every step succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from clawup.config import ClawupConfig, config_path, load_clawup_config
from clawup.errors import ClawupError, MissingTemplateVarError
from clawup.identity.cache import IdentityCache
from clawup.identity.loader import IDENTITY_FILE, discover_identities, load_identity_manifest
from clawup.identity.models import DiscoveredIdentity
from clawup.identity.source import format_source, parse_source
from clawup.manifest.loader import load_manifest, resolve_identity_path
from clawup.manifest.models import DeploymentManifest
from clawup.manifest.writer import WriteResult, apply_reconciliation, write_manifest_bundle
from clawup.reconcile.matcher import MatchedPair, MatchResult, reconcile
from clawup.secrets.env import build_env
from clawup.secrets.resolver import SecretsResolution, SecretsResolver, require_secrets
from clawup.templates import TemplateVarResolution, resolve_template_vars

logger = logging.getLogger(__name__)


@dataclass
class FetchTask:
    """One identity reference to fetch. rel_path is the name it is matched under."""

    reference: str
    rel_path: str
    version: str | None = None
    scan: bool = False


@dataclass
class SyncReport:
    manifest: DeploymentManifest
    match: MatchResult
    secrets: SecretsResolution
    template_vars: TemplateVarResolution
    discovered: list[DiscoveredIdentity] = field(default_factory=list)
    write: WriteResult | None = None

    @property
    def changed(self) -> bool:
        return self.write is not None and self.write.changed


def agent_fetch_tasks(manifest: DeploymentManifest, project_root: Path) -> list[FetchTask]:
    """One task per distinct (identity, identityVersion) among the agents."""
    tasks: dict[tuple[str, str | None], FetchTask] = {}
    for agent in manifest.agents:
        key = (agent.identity, agent.identity_version)
        if key not in tasks:
            tasks[key] = FetchTask(
                reference=resolve_identity_path(agent.identity, project_root),
                rel_path=agent.identity,
                version=agent.identity_version,
            )
    return list(tasks.values())


def from_fetch_tasks(
    references: Sequence[str], project_root: Path, *, version: str | None = None
) -> list[FetchTask]:
    """Tasks for explicit references; a directory without identity.yaml is scanned."""
    tasks = []
    for ref in references:
        source = parse_source(ref, version)
        reference = ref if source.is_remote else resolve_identity_path(ref, project_root)
        tasks.append(FetchTask(reference=reference, rel_path=ref, version=version, scan=True))
    return tasks


def _scan_prefix(task: FetchTask) -> str:
    source = parse_source(task.rel_path, task.version)
    if not source.is_remote:
        return task.rel_path.rstrip("/") + "/"
    if source.subfolder:
        return format_source(source) + "/"
    return format_source(source) + "#"


def run_fetch_task(task: FetchTask, cache: IdentityCache) -> list[DiscoveredIdentity]:
    source = parse_source(task.reference, task.version)
    directory = cache.locate(source)
    if task.scan and not (directory / IDENTITY_FILE).is_file():
        found = discover_identities(directory, prefix=_scan_prefix(task))
        logger.info(f"Discovered {len(found)} identities under {task.rel_path}")
        return found
    manifest = load_identity_manifest(directory, source_label=task.rel_path)
    return [DiscoveredIdentity(rel_path=task.rel_path, manifest=manifest, local_dir=directory)]


def fetch_identities(
    tasks: Sequence[FetchTask],
    cache: IdentityCache,
    *,
    max_workers: int = 4,
) -> list[DiscoveredIdentity]:
    """Run every task concurrently; results keep task order.

    All tasks run to completion. If any failed, every failure is logged and
    the first one (in task order) is raised.
    """
    if not tasks:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks)))) as pool:
        futures = [pool.submit(run_fetch_task, task, cache) for task in tasks]

    discovered: list[DiscoveredIdentity] = []
    errors: list[ClawupError] = []
    for task, future in zip(tasks, futures):
        exc = future.exception()
        if exc is None:
            discovered.extend(future.result())
        elif isinstance(exc, ClawupError):
            logger.error(f"Failed to fetch identity {task.rel_path}: {exc.message}")
            errors.append(exc)
        else:
            raise exc
    if errors:
        raise errors[0]
    return discovered


def match_agent_sources(
    manifest: DeploymentManifest,
    tasks: Sequence[FetchTask],
    discovered: Sequence[DiscoveredIdentity],
) -> MatchResult:
    """Pair every agent with the identity fetched from its own source.

    *tasks* and *discovered* come from agent_fetch_tasks and fetch_identities,
    one identity per task, so agents sharing a source share its identity.
    """
    by_source = {(t.rel_path, t.version): d for t, d in zip(tasks, discovered, strict=True)}
    return MatchResult(
        matched=[
            MatchedPair(agent, by_source[(agent.identity, agent.identity_version)], 1)
            for agent in manifest.agents
        ]
    )


def collect_identities(
    manifest: DeploymentManifest,
    project_root: Path,
    cache: IdentityCache,
    *,
    from_refs: Sequence[str] | None = None,
    version: str | None = None,
    max_workers: int = 4,
) -> tuple[list[DiscoveredIdentity], MatchResult]:
    """Fetch identities and pair them with the manifest's agents.

    Without *from_refs* each agent is paired with its own identity source.
    With *from_refs* the fetched set is matched by the tiered matcher.
    """
    if from_refs:
        tasks = from_fetch_tasks(from_refs, project_root, version=version)
        discovered = fetch_identities(tasks, cache, max_workers=max_workers)
        return discovered, reconcile(manifest.agents, discovered)
    tasks = agent_fetch_tasks(manifest, project_root)
    discovered = fetch_identities(tasks, cache, max_workers=max_workers)
    return discovered, match_agent_sources(manifest, tasks, discovered)


def sync_project(
    project_root: Path,
    *,
    from_refs: Sequence[str] | None = None,
    version: str | None = None,
    template_vars: Mapping[str, str] | None = None,
    env: Mapping[str, str] | None = None,
    env_file: Path | None = None,
    dry_run: bool = False,
    strict_secrets: bool = False,
    config: ClawupConfig | None = None,
    cache: IdentityCache | None = None,
) -> SyncReport:
    """Reconcile clawup.yaml under *project_root* against its identities.

    With *from_refs* the given references (single identities or directories
    of identities) replace the agents' own identity sources as the set to
    match against. *env* bypasses the .env lookup entirely.
    """
    config = config or load_clawup_config(config_path(project_root))
    cache = cache or IdentityCache(config.cache_dir, timeout=config.fetch_timeout)
    manifest_path = project_root / config.manifest_file
    manifest = load_manifest(manifest_path)

    discovered, match = collect_identities(
        manifest,
        project_root,
        cache,
        from_refs=from_refs,
        version=version,
        max_workers=config.max_workers,
    )
    for pair in match.matched:
        logger.debug(f"Matched {pair.agent.name} -> {pair.discovered.rel_path} (tier {pair.tier})")
    for agent in match.unmatched_agents:
        logger.warning(f"Agent {agent.name} has no matching identity; left unchanged")
    for path in match.unmatched_paths:
        logger.info(f"Identity {path} matched no agent")

    if env is None:
        env = build_env(env_file or project_root / config.env_file)
    identities = {m.agent.name: m.discovered.manifest for m in match.matched}
    secrets = SecretsResolver().resolve(manifest, identities, env)
    for missing in secrets.missing:
        logger.info(f"Secret {missing.key} has no value in {missing.env_var}")

    resolution = resolve_template_vars(
        manifest, [m.discovered for m in match.matched], supplied=template_vars
    )
    if resolution.unresolved:
        raise MissingTemplateVarError(resolution.unresolved, manifest_file=config.manifest_file)
    if strict_secrets:
        require_secrets(secrets, env_file=str(env_file or config.env_file))

    updated = apply_reconciliation(manifest, match, secrets, resolution)
    report = SyncReport(
        manifest=updated,
        match=match,
        secrets=secrets,
        template_vars=resolution,
        discovered=discovered,
    )
    if dry_run:
        logger.info("Dry run: nothing written")
        return report
    report.write = write_manifest_bundle(
        updated,
        project_root,
        manifest_file=config.manifest_file,
        env_example_file=config.env_example_file,
    )
    return report
