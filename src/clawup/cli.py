"""CLI entry point for clawup."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import cast

from clawup import __version__
from clawup.config import ClawupConfig, config_path, load_clawup_config
from clawup.errors import ClawupError
from clawup.identity.cache import IdentityCache, resolve_identity
from clawup.manifest.loader import find_project_root, load_manifest
from clawup.pipeline import collect_identities, sync_project
from clawup.secrets.env import build_env
from clawup.secrets.resolver import SecretsResolver, require_secrets


def _project_root(args: argparse.Namespace) -> Path:
    root = cast(Path | None, args.root)
    if root is not None:
        return root
    found = find_project_root()
    if found is None:
        print("Error: no clawup.yaml found in this directory or its parents", file=sys.stderr)
        sys.exit(1)
    return found


def _config(root: Path) -> ClawupConfig:
    return load_clawup_config(config_path(root))


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            print(f"Error: --var expects NAME=VALUE, got {pair!r}", file=sys.stderr)
            sys.exit(1)
        values[name.strip()] = value
    return values


def _cmd_validate(args: argparse.Namespace) -> None:
    root = _project_root(args)
    config = _config(root)
    manifest = load_manifest(root / config.manifest_file)
    print(f"Manifest OK: {root / config.manifest_file}")
    print(f"Stack:    {manifest.stack_name} ({manifest.provider}, {manifest.region})")
    print(f"Agents:   {len(manifest.agents)}")
    for agent in manifest.agents:
        version = f" @ {agent.identity_version}" if agent.identity_version else ""
        print(f"  {agent.name:<20} {agent.role:<12} {agent.identity}{version}")


def _cmd_resolve(args: argparse.Namespace) -> None:
    root = cast(Path | None, args.root) or Path.cwd()
    config = _config(root)
    cache = IdentityCache(config.cache_dir, timeout=config.fetch_timeout)
    manifest, directory = resolve_identity(
        cast(str, args.reference), cache, version=cast(str | None, args.identity_version)
    )
    print(f"Identity:  {manifest.display_name} ({manifest.name})")
    print(f"Role:      {manifest.role}")
    print(f"Directory: {directory}")
    if manifest.model:
        print(f"Model:     {manifest.model}")
    if manifest.plugins:
        print(f"Plugins:   {', '.join(manifest.plugins)}")
    if manifest.deps:
        print(f"Deps:      {', '.join(manifest.deps)}")
    if manifest.template_vars:
        print(f"Template vars: {', '.join(manifest.template_vars)}")
    if manifest.required_secrets:
        print(f"Required secrets: {', '.join(manifest.required_secrets)}")


def _cmd_secrets(args: argparse.Namespace) -> None:
    root = _project_root(args)
    config = _config(root)
    manifest = load_manifest(root / config.manifest_file)
    cache = IdentityCache(config.cache_dir, timeout=config.fetch_timeout)

    _, match = collect_identities(
        manifest,
        root,
        cache,
        from_refs=cast(list[str] | None, args.from_refs),
        max_workers=config.max_workers,
    )

    env_file = cast(Path | None, args.env_file) or root / config.env_file
    identities = {m.agent.name: m.discovered.manifest for m in match.matched}
    resolution = SecretsResolver().resolve(manifest, identities, build_env(env_file))

    missing = {m.env_var for m in resolution.missing}
    for req in resolution.requirements:
        if req.literal is not None:
            continue
        owner = req.agent or "global"
        if req.env_var in missing:
            status = "missing"
        elif req.env_var in resolution.values:
            status = "set"
        else:
            status = "optional"
        print(f"  {req.env_var:<32} {owner:<20} {status}")
    for warning in resolution.warnings:
        print(f"Warning: {warning}")
    require_secrets(resolution, env_file=str(env_file))
    print("All required secrets are set.")


def _cmd_sync(args: argparse.Namespace) -> None:
    root = _project_root(args)
    dry_run = cast(bool, args.dry_run)
    report = sync_project(
        root,
        from_refs=cast(list[str] | None, args.from_refs),
        version=cast(str | None, args.identity_version),
        template_vars=_parse_vars(cast(list[str], args.vars)),
        env_file=cast(Path | None, args.env_file),
        dry_run=dry_run,
        strict_secrets=cast(bool, args.strict),
    )

    print(f"Matched:   {len(report.match.matched)}")
    for pair in report.match.matched:
        print(f"  {pair.agent.name} -> {pair.discovered.rel_path}")
    if report.match.unmatched_agents:
        names = ", ".join(a.name for a in report.match.unmatched_agents)
        print(f"Unmatched agents: {names}")
    if report.match.unmatched_paths:
        print(f"Unmatched identities: {', '.join(report.match.unmatched_paths)}")
    if report.template_vars.newly_required:
        print(f"New template vars: {', '.join(report.template_vars.newly_required)}")
    if report.secrets.missing:
        names = sorted({m.env_var for m in report.secrets.missing})
        print(f"Missing secrets: {', '.join(names)}")
    for warning in report.secrets.warnings:
        print(f"Warning: {warning}")

    if dry_run:
        print("Dry run: no files written.")
    elif report.changed:
        print("Updated clawup.yaml and .env.example.")
    else:
        print("Already up to date.")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="clawup",
        description="Resolve agent identities and reconcile the clawup deployment manifest",
    )
    _ = parser.add_argument(
        "-V", "--version", action="version", version=f"clawup {__version__}"
    )
    _ = parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    _ = parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Project directory holding clawup.yaml (default: search upwards from cwd)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # validate subcommand
    _ = subparsers.add_parser("validate", help="Validate clawup.yaml")

    # resolve subcommand
    resolve_p = subparsers.add_parser("resolve", help="Fetch and validate one identity")
    _ = resolve_p.add_argument("reference", help="Local path or git URL[#subfolder]")
    _ = resolve_p.add_argument(
        "--version",
        dest="identity_version",
        default=None,
        help="Git ref (tag, branch or commit) to pin a remote identity to",
    )

    # secrets subcommand
    secrets_p = subparsers.add_parser("secrets", help="List expected and missing secrets")
    _ = secrets_p.add_argument(
        "--from", dest="from_refs", action="append", default=None, metavar="REF",
        help="Match against these identity references instead of the agents' own",
    )
    _ = secrets_p.add_argument(
        "--env-file", dest="env_file", type=Path, default=None, help="Path to .env"
    )

    # sync subcommand
    sync_p = subparsers.add_parser("sync", help="Reconcile clawup.yaml with its identities")
    _ = sync_p.add_argument(
        "--from", dest="from_refs", action="append", default=None, metavar="REF",
        help="Identity or directory of identities to match against (repeatable)",
    )
    _ = sync_p.add_argument(
        "--version",
        dest="identity_version",
        default=None,
        help="Git ref applied to every --from reference",
    )
    _ = sync_p.add_argument(
        "--var", dest="vars", action="append", default=[], metavar="NAME=VALUE",
        help="Template variable value (repeatable)",
    )
    _ = sync_p.add_argument(
        "--env-file", dest="env_file", type=Path, default=None, help="Path to .env"
    )
    _ = sync_p.add_argument(
        "--dry-run", action="store_true", dest="dry_run", help="Report without writing"
    )
    _ = sync_p.add_argument(
        "--strict", action="store_true", help="Fail when a required secret has no value"
    )

    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if cast(bool, args.verbose) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    dispatch = {
        "validate": _cmd_validate,
        "resolve": _cmd_resolve,
        "secrets": _cmd_secrets,
        "sync": _cmd_sync,
    }
    command = cast(str | None, args.command)
    handler = dispatch.get(command) if command is not None else None
    if handler is None:
        parser.print_help()
        sys.exit(1)
    try:
        handler(args)
    except ClawupError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
