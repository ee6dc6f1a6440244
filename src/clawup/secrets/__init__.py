"""Secret requirements: registries, naming, validation and resolution."""

from clawup.secrets.env import (
    agent_env_var_name,
    build_env,
    camel_to_screaming_snake,
    env_ref,
    load_env_file,
    parse_env_ref,
)
from clawup.secrets.registry import (
    DEP_REGISTRY,
    PLUGIN_REGISTRY,
    DependencyRegistryEntry,
    PluginRegistryEntry,
    SecretScope,
    SecretSpec,
    infra_secrets,
)
from clawup.secrets.resolver import (
    MissingSecret,
    SecretRequirement,
    SecretsResolution,
    SecretsResolver,
    require_secrets,
    resolve_secrets,
)
from clawup.secrets.validators import VALIDATORS, SecretValidator

__all__ = [
    "DEP_REGISTRY",
    "PLUGIN_REGISTRY",
    "VALIDATORS",
    "DependencyRegistryEntry",
    "MissingSecret",
    "PluginRegistryEntry",
    "SecretRequirement",
    "SecretScope",
    "SecretSpec",
    "SecretValidator",
    "SecretsResolution",
    "SecretsResolver",
    "agent_env_var_name",
    "build_env",
    "camel_to_screaming_snake",
    "env_ref",
    "infra_secrets",
    "load_env_file",
    "parse_env_ref",
    "require_secrets",
    "resolve_secrets",
]
