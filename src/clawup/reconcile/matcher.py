"""Tiered matching of manifest agents against freshly discovered identities.

Tiers run in order over shrinking pools:
  1. exact source   agent.identity == discovered.rel_path
  2. name           short_name(agent.name) == discovered.manifest.name
  3. unique role    agent.role == discovered.manifest.role

A key only pairs items when it is unique on both sides among the items still
unmatched when the tier runs. Contended keys are skipped, never guessed.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from clawup.identity.models import DiscoveredIdentity
from clawup.manifest.models import AgentDefinition

AGENT_NAME_PREFIX = "agent-"


@dataclass(frozen=True)
class MatchedPair:
    agent: AgentDefinition
    discovered: DiscoveredIdentity
    tier: int


@dataclass
class MatchResult:
    matched: list[MatchedPair] = field(default_factory=list)
    unmatched_agents: list[AgentDefinition] = field(default_factory=list)
    unmatched_paths: list[str] = field(default_factory=list)

    def discovered_for(self, agent_name: str) -> DiscoveredIdentity | None:
        return next((m.discovered for m in self.matched if m.agent.name == agent_name), None)


def short_name(agent_name: str) -> str:
    """Identity-derived part of an agent name: 'agent-juno' -> 'juno'."""
    if agent_name.startswith(AGENT_NAME_PREFIX):
        return agent_name[len(AGENT_NAME_PREFIX) :]
    return agent_name


_AgentKey = Callable[[AgentDefinition], str]
_DiscoveredKey = Callable[[DiscoveredIdentity], str]

_TIERS: tuple[tuple[int, _AgentKey, _DiscoveredKey], ...] = (
    (1, lambda a: a.identity, lambda d: d.rel_path),
    (2, lambda a: short_name(a.name), lambda d: d.manifest.name),
    (3, lambda a: a.role, lambda d: d.manifest.role),
)


def _run_tier(
    agents: dict[int, AgentDefinition],
    discovered: dict[int, DiscoveredIdentity],
    agent_key: _AgentKey,
    discovered_key: _DiscoveredKey,
) -> list[tuple[int, int]]:
    agent_counts = Counter(agent_key(a) for a in agents.values())
    discovered_counts = Counter(discovered_key(d) for d in discovered.values())
    unique_discovered = {
        discovered_key(d): idx
        for idx, d in discovered.items()
        if discovered_counts[discovered_key(d)] == 1
    }
    pairs: list[tuple[int, int]] = []
    for a_idx, agent in agents.items():
        key = agent_key(agent)
        if agent_counts[key] == 1 and key in unique_discovered:
            pairs.append((a_idx, unique_discovered[key]))
    return pairs


def reconcile(
    agents: Sequence[AgentDefinition],
    discovered: Sequence[DiscoveredIdentity],
) -> MatchResult:
    """Pair agents with discovered identities. Pure and deterministic."""
    agent_pool = dict(enumerate(agents))
    discovered_pool = dict(enumerate(discovered))
    pairs: list[tuple[int, int, int]] = []

    for tier, agent_key, discovered_key in _TIERS:
        for a_idx, d_idx in _run_tier(agent_pool, discovered_pool, agent_key, discovered_key):
            pairs.append((a_idx, d_idx, tier))
            del agent_pool[a_idx]
            del discovered_pool[d_idx]

    pairs.sort()
    return MatchResult(
        matched=[MatchedPair(agents[a], discovered[d], tier) for a, d, tier in pairs],
        unmatched_agents=list(agent_pool.values()),
        unmatched_paths=[d.rel_path for d in discovered_pool.values()],
    )
