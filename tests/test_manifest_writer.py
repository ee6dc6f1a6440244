"""Tests for merging results into the manifest and writing the bundle (manifest/writer.py)."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from clawup.errors import ManifestInvalidError
from clawup.manifest.loader import load_manifest
from clawup.manifest.writer import (
    apply_reconciliation,
    check_bundle_consistency,
    dump_manifest,
    merge_prior,
    plugin_config,
    render_env_example,
    write_manifest_bundle,
)
from clawup.reconcile.matcher import reconcile
from clawup.secrets.resolver import resolve_secrets
from clawup.templates import resolve_template_vars
from tests.conftest import FULL_ENV, make_agent, make_discovered, make_identity, make_manifest

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply(manifest, discovered, env=FULL_ENV):
    match = reconcile(manifest.agents, discovered)
    secrets = resolve_secrets(manifest, discovered, env)
    matched = [m.discovered for m in match.matched]
    return apply_reconciliation(
        manifest, match, secrets, resolve_template_vars(manifest, matched)
    )


@pytest.mark.unit
class TestMergePrior:
    def test_prior_wins(self):
        assert merge_prior({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        defaults = {"mapping": {"x": 1, "y": 2}, "flag": True}
        prior = {"mapping": {"y": 9, "z": 3}}
        assert merge_prior(defaults, prior) == {"mapping": {"x": 1, "y": 9, "z": 3}, "flag": True}

    def test_prior_scalar_replaces_mapping(self):
        assert merge_prior({"a": {"x": 1}}, {"a": "off"}) == {"a": "off"}

    def test_inputs_not_mutated(self):
        defaults = {"a": {"x": 1}}
        merge_prior(defaults, {"a": {"x": 2}})
        assert defaults == {"a": {"x": 1}}


@pytest.mark.unit
class TestPluginConfig:
    def test_layering(self):
        agent = make_agent(
            "agent-pm",
            plugins={"openclaw-linear": {"stateActions": {"started": "remove"}, "teamId": "T1"}},
        )
        identity = make_identity(
            "pm",
            plugins=["openclaw-linear"],
            pluginDefaults={
                "openclaw-linear": {"stateActions": {"started": "add", "done": "remove"}}
            },
        )
        config = plugin_config("openclaw-linear", agent, identity)
        assert config == {
            "agentMapping": {"$AGENT_NAME": "default"},
            "stateActions": {"started": "remove", "done": "remove"},
            "agentId": "agent-pm",
            "teamId": "T1",
        }

    def test_prior_agent_id_kept(self):
        agent = make_agent("agent-pm", plugins={"slack": {"agentId": "custom"}})
        config = plugin_config("slack", agent, make_identity("pm", plugins=["slack"]))
        assert config["agentId"] == "custom"

    def test_unknown_plugin_gets_identity_defaults(self):
        agent = make_agent("agent-pm")
        identity = make_identity("pm", plugins=["x"], pluginDefaults={"x": {"k": "v"}})
        assert plugin_config("x", agent, identity) == {"k": "v", "agentId": "agent-pm"}


@pytest.mark.unit
class TestApplyReconciliation:
    def test_moved_identity_updates_source(self):
        manifest = make_manifest([make_agent("agent-juno", "eng", "./old-eng")])
        updated = _apply(manifest, [make_discovered("./new-eng", "juno", "eng")])
        assert updated.agents[0].identity == "./new-eng"
        assert manifest.agents[0].identity == "./old-eng"

    def test_secrets_written_as_env_refs(self):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        updated = _apply(manifest, [make_discovered("./pm", "pm", deps=["gh"])])
        assert updated.secrets["anthropicApiKey"] == "${env:ANTHROPIC_API_KEY}"
        assert updated.agents[0].secrets == {"githubToken": "${env:PM_GITHUB_TOKEN}"}

    def test_prior_secret_values_preserved(self):
        agent = make_agent(
            "agent-pm", "pm", "./pm", secrets={"githubToken": "${env:MY_GH}", "extra": "literal"}
        )
        manifest = make_manifest([agent], secrets={"anthropicApiKey": "${env:CLAUDE_KEY}"})
        updated = _apply(manifest, [make_discovered("./pm", "pm", deps=["gh"])])
        assert updated.agents[0].secrets == {"githubToken": "${env:MY_GH}", "extra": "literal"}
        assert updated.secrets["anthropicApiKey"] == "${env:CLAUDE_KEY}"

    def test_plugins_merged(self):
        agent = make_agent("agent-pm", "pm", "./pm", plugins={"slack": {"channel": "#pm"}})
        manifest = make_manifest([agent])
        updated = _apply(manifest, [make_discovered("./pm", "pm", plugins=["slack", "openclaw-linear"])])
        plugins = updated.agents[0].plugins
        assert plugins["slack"] == {"agentId": "agent-pm", "channel": "#pm"}
        assert plugins["openclaw-linear"]["agentMapping"] == {"$AGENT_NAME": "default"}

    def test_unmatched_agent_untouched(self):
        agent = make_agent("agent-ops", "ops", "./ops", plugins={"slack": {"a": 1}})
        manifest = make_manifest([agent])
        updated = _apply(manifest, [])
        assert updated.agents[0].identity == "./ops"
        assert updated.agents[0].plugins == {"slack": {"a": 1}}

    def test_template_vars_persisted(self):
        manifest = make_manifest(
            [make_agent("agent-pm", "pm", "./pm")], templateVars={"LINEAR_TEAM": "ENG"}
        )
        updated = _apply(
            manifest, [make_discovered("./pm", "pm", templateVars=["LINEAR_TEAM", "OWNER_NAME"])]
        )
        assert updated.template_vars == {"LINEAR_TEAM": "ENG"}


@pytest.mark.unit
class TestEnvExample:
    def test_grouped_by_scope(self):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        updated = _apply(manifest, [make_discovered("./pm", "pm", deps=["gh"])])
        text = render_env_example(updated)
        lines = text.splitlines()
        assert lines[2] == "# Global"
        assert "ANTHROPIC_API_KEY=" in lines
        assert "# Agent: Pm (agent-pm, role pm)" in lines
        assert lines.index("PM_GITHUB_TOKEN=") > lines.index("# Agent: Pm (agent-pm, role pm)")
        assert text.endswith("\n")

    def test_shared_role_var_listed_once(self):
        manifest = make_manifest(
            [make_agent("agent-a", "eng", "./a"), make_agent("agent-b", "eng", "./b")]
        )
        updated = _apply(
            manifest,
            [
                make_discovered("./a", "a", "eng", deps=["gh"]),
                make_discovered("./b", "b", "eng", deps=["gh"]),
            ],
        )
        assert render_env_example(updated).count("ENG_GITHUB_TOKEN=") == 1

    def test_no_values_written(self):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        text = render_env_example(_apply(manifest, [make_discovered("./pm", "pm")]))
        assert "sk-ant" not in text

    def test_consistency_detects_missing_entry(self):
        manifest = make_manifest([], secrets={"anthropicApiKey": "${env:ANTHROPIC_API_KEY}"})
        assert check_bundle_consistency(manifest, "# nothing\n") == [
            "ANTHROPIC_API_KEY: referenced in the manifest but missing from .env.example"
        ]
        assert check_bundle_consistency(manifest, render_env_example(manifest)) == []


@pytest.mark.unit
class TestWriteBundle:
    def test_writes_both_files(self, tmp_path: Path):
        manifest = _apply(
            make_manifest([make_agent("agent-pm", "pm", "./pm")]), [make_discovered("./pm", "pm")]
        )
        result = write_manifest_bundle(manifest, tmp_path)
        assert result.changed is True
        assert load_manifest(tmp_path / "clawup.yaml") == manifest
        assert (tmp_path / ".env.example").read_text() == render_env_example(manifest)

    def test_yaml_uses_camel_case_in_field_order(self, tmp_path: Path):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        text = dump_manifest(manifest)
        assert text.startswith("stackName: dev\n")
        assert "ownerProfile:" in text
        assert "displayName: Pm" in text

    def test_unchanged_second_write(self, tmp_path: Path):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        write_manifest_bundle(manifest, tmp_path)
        before = (tmp_path / "clawup.yaml").stat().st_mtime_ns
        assert write_manifest_bundle(manifest, tmp_path).changed is False
        assert (tmp_path / "clawup.yaml").stat().st_mtime_ns == before

    def test_failed_second_replace_restores_first(self, tmp_path: Path):
        (tmp_path / "clawup.yaml").write_text("original: true\n")
        (tmp_path / ".env.example").write_text("OLD=\n")
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        real_replace = os.replace
        calls = []

        def _replace(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError("disk full")
            real_replace(src, dst)

        with patch("clawup.manifest.writer.os.replace", side_effect=_replace):
            with pytest.raises(OSError, match="disk full"):
                write_manifest_bundle(manifest, tmp_path)

        assert (tmp_path / "clawup.yaml").read_text() == "original: true\n"
        assert (tmp_path / ".env.example").read_text() == "OLD=\n"
        assert sorted(p.name for p in tmp_path.iterdir()) == [".env.example", "clawup.yaml"]

    def test_failed_replace_leaves_no_temp_files(self, tmp_path: Path):
        manifest = make_manifest([make_agent("agent-pm", "pm", "./pm")])
        with patch("clawup.manifest.writer.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(OSError):
                write_manifest_bundle(manifest, tmp_path)
        assert list(tmp_path.iterdir()) == []

    def test_inconsistent_bundle_rejected(self, tmp_path: Path):
        manifest = make_manifest([])
        with patch("clawup.manifest.writer.render_env_example", return_value="# empty\n"):
            manifest = manifest.model_copy(update={"secrets": {"k": "${env:K}"}})
            with pytest.raises(ManifestInvalidError, match="K: referenced"):
                write_manifest_bundle(manifest, tmp_path)
        assert not (tmp_path / "clawup.yaml").exists()
