"""Template variable resolution and {{NAME}} placeholder rendering.

Each variable declared by an identity is classified as:
  preserved   already in the manifest's templateVars (kept verbatim)
  auto-filled derived 1:1 from the owner profile
  supplied    passed explicitly by the caller (e.g. --var NAME=VALUE)
  unresolved  none of the above

Precedence: supplied > preserved > auto-filled. Only preserved and supplied
values are written back to the manifest; owner-derived values are
recomputed on every run.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from clawup.identity.models import DiscoveredIdentity
from clawup.manifest.models import DeploymentManifest, OwnerProfile

PLACEHOLDER_RE = re.compile(r"\{\{([A-Z][A-Z0-9_]*)\}\}")

DEFAULT_USER_NOTES = "No additional notes provided yet."


@dataclass
class TemplateVarResolution:
    values: dict[str, str] = field(default_factory=dict)
    persisted: dict[str, str] = field(default_factory=dict)
    auto_filled: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    supplied: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    newly_required: list[str] = field(default_factory=list)


def owner_auto_vars(owner: OwnerProfile) -> dict[str, str]:
    """Variables that map 1:1 onto owner profile fields."""
    auto = {
        "OWNER_NAME": owner.name,
        "TIMEZONE": owner.timezone,
        "WORKING_HOURS": owner.working_hours,
        "USER_NOTES": owner.notes or DEFAULT_USER_NOTES,
    }
    return {k: v for k, v in auto.items() if v}


def collect_template_var_names(discovered: Iterable[DiscoveredIdentity]) -> list[str]:
    names: set[str] = set()
    for d in discovered:
        names.update(d.manifest.template_vars)
    return sorted(names)


def resolve_template_vars(
    manifest: DeploymentManifest,
    discovered: Sequence[DiscoveredIdentity],
    owner: OwnerProfile | None = None,
    *,
    supplied: Mapping[str, str] | None = None,
) -> TemplateVarResolution:
    """Resolve every declared template variable. Same inputs, same output."""
    owner = owner or manifest.owner_profile
    auto = owner_auto_vars(owner)
    prior = manifest.template_vars
    supplied = {k: v for k, v in (supplied or {}).items() if v}

    result = TemplateVarResolution()
    for name in collect_template_var_names(discovered):
        if name in supplied:
            result.values[name] = supplied[name]
            result.supplied.append(name)
        elif prior.get(name):
            result.values[name] = prior[name]
            result.preserved.append(name)
        elif name in auto:
            result.values[name] = auto[name]
            result.auto_filled.append(name)
        else:
            result.unresolved.append(name)
        if name not in prior and name not in auto:
            result.newly_required.append(name)

    persisted = dict(prior)
    persisted.update({name: supplied[name] for name in result.supplied})
    result.persisted = dict(sorted(persisted.items()))
    return result


def find_placeholders(text: str) -> list[str]:
    """Distinct {{NAME}} placeholders in order of first appearance."""
    return list(dict.fromkeys(PLACEHOLDER_RE.findall(text)))


def render_template(text: str, values: Mapping[str, str]) -> str:
    """Replace {{NAME}} with values[NAME]; unknown placeholders are left intact."""
    return PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), text)
