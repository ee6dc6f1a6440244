"""Environment variable naming, ${env:NAME} references and .env loading."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

ENV_REF_RE = re.compile(r"^\$\{env:([A-Za-z_][A-Za-z0-9_]*)\}$")

_CAMEL_BOUNDARY_1 = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_BOUNDARY_2 = re.compile(r"([a-z0-9])([A-Z])")


def camel_to_screaming_snake(key: str) -> str:
    """'linearApiKey' -> 'LINEAR_API_KEY'."""
    s = _CAMEL_BOUNDARY_1.sub(r"\1_\2", key)
    s = _CAMEL_BOUNDARY_2.sub(r"\1_\2", s)
    return re.sub(r"[^A-Za-z0-9]+", "_", s).strip("_").upper()


def global_env_var_name(key: str) -> str:
    return camel_to_screaming_snake(key)


def agent_env_var_name(role: str, key: str) -> str:
    """Namespaced per-agent variable: role 'pm' + 'linearApiKey' -> 'PM_LINEAR_API_KEY'."""
    return f"{camel_to_screaming_snake(role)}_{camel_to_screaming_snake(key)}"


def env_ref(name: str) -> str:
    return f"${{env:{name}}}"


def parse_env_ref(value: str | None) -> str | None:
    """Return NAME for '${env:NAME}', else None."""
    if not value:
        return None
    m = ENV_REF_RE.match(value.strip())
    return m.group(1) if m else None


def load_env_file(path: Path) -> dict[str, str]:
    """Parse KEY=VALUE lines from a .env file. Missing file -> empty dict."""
    if not path.is_file():
        return {}
    values: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        if key:
            values[key] = value
    return values


def build_env(env_file: Path | None, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """.env file values overlaid by the process environment (non-empty values only)."""
    env = load_env_file(env_file) if env_file else {}
    source = os.environ if environ is None else environ
    env.update({k: v for k, v in source.items() if v})
    return env
