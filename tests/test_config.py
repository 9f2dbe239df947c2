"""
Tests for the configuration loader — YAML, tools, profiles and context.
"""

import textwrap
from pathlib import Path

import pytest
import yaml

from dws.core.config.loader import (
    DEFAULT_PROFILE,
    active_profile,
    build_context,
    list_profiles,
    load_layers,
    load_workspace_config,
    load_yaml,
    parse_tool,
    parse_tools,
    set_active_profile,
)
from dws.core.context import WorkspacePaths
from dws.core.errors import ConfigError, DuplicateInLayer, ManifestError, MissingRequiredField
from dws.core.models.machine import MachineDescriptor


class TestLoadYaml:
    def test_missing_file(self, tmp_path: Path):
        assert load_yaml(tmp_path / "nope.yml") == {}

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_duplicate_tool_key(self, tmp_path: Path):
        path = tmp_path / "dws.yml"
        path.write_text(textwrap.dedent("""\
            tools:
              rg:
                installer: github
              rg:
                installer: gitlab
        """))
        with pytest.raises(DuplicateInLayer) as exc:
            load_yaml(path)
        assert exc.value.tool == "rg"
        assert "line 4" in str(exc.value)

    def test_duplicate_setting_key_is_config_error(self, tmp_path: Path):
        path = tmp_path / "config.yml"
        path.write_text(textwrap.dedent("""\
            settings:
              jobs: 2
              jobs: 4
        """))
        with pytest.raises(ConfigError, match="Duplicate key 'jobs' \\(line 3\\)") as exc:
            load_yaml(path)
        assert not isinstance(exc.value, DuplicateInLayer)

    def test_duplicate_field_inside_tool_is_config_error(self, tmp_path: Path):
        """Only a repeated tool name is reported against the tool layer."""
        path = tmp_path / "dws.yml"
        path.write_text(textwrap.dedent("""\
            tools:
              rg:
                installer: github
                installer: gitlab
        """))
        with pytest.raises(ConfigError, match="installer"):
            load_yaml(path)

    def test_duplicate_top_level_key_is_config_error(self, tmp_path: Path):
        path = tmp_path / "dws.yml"
        path.write_text("tools: {}\ntools: {}\n")
        with pytest.raises(ConfigError, match="'tools'"):
            load_yaml(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yml"
        path.write_text("tools: [unclosed\n")
        with pytest.raises(ConfigError):
            load_yaml(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml(path)

    def test_merge_keys_allowed(self, tmp_path: Path):
        path = tmp_path / "anchors.yml"
        path.write_text(textwrap.dedent("""\
            base: &base
              installer: github
            tools:
              rg:
                <<: *base
                project: BurntSushi/ripgrep
        """))
        assert load_yaml(path)["tools"]["rg"]["installer"] == "github"


class TestParseTools:
    def test_mapping_form(self):
        tools = parse_tools({"rg": {"installer": "github"}, "fd": {"installer": "github"}})
        assert [t.name for t in tools] == ["rg", "fd"]

    def test_list_form(self):
        tools = parse_tools([{"name": "rg", "installer": "github"}, {"name": "rg", "installer": "gitlab"}])
        assert [t.installer.value for t in tools] == ["github", "gitlab"]

    def test_missing_installer(self):
        with pytest.raises(MissingRequiredField):
            parse_tool("rg", {"project": "x"})

    def test_schema_error_names_field(self):
        with pytest.raises(ManifestError, match="self_update"):
            parse_tool("rg", {"installer": "github", "self_update": "often"})

    def test_collect_mode(self):
        issues: list = []
        tools = parse_tools(
            {"ok": {"installer": "github"}, "bad": {"project": "x"}, "worse": "nope"},
            issues=issues,
        )
        assert [t.name for t in tools] == ["ok"]
        assert [i.tool for i in issues] == ["bad", "worse"]

    def test_wrong_type(self):
        with pytest.raises(ManifestError):
            parse_tools("rg")


class TestProfiles:
    def test_list_profiles(self, paths: WorkspacePaths):
        for name in ("work", "default", ".hidden"):
            paths.profile_dir(name).mkdir(parents=True)
        assert list_profiles(paths) == ["default", "work"]

    def test_active_defaults_to_default_dir(self, paths: WorkspacePaths):
        config = load_workspace_config(paths)
        assert active_profile(paths, config) is None
        paths.profile_dir(DEFAULT_PROFILE).mkdir(parents=True)
        assert active_profile(paths, config) == DEFAULT_PROFILE

    def test_set_active_keeps_other_keys(self, paths: WorkspacePaths, write_manifest):
        write_manifest({"rg": {"installer": "github"}}, profile=None, settings={"jobs": 3})
        paths.profile_dir("work").mkdir(parents=True)
        set_active_profile(paths, "work")
        data = yaml.safe_load(paths.config_file.read_text())
        assert data["active_profile"] == "work"
        assert data["settings"] == {"jobs": 3}
        assert "rg" in data["tools"]

    def test_set_unknown_profile(self, paths: WorkspacePaths):
        with pytest.raises(ConfigError, match="not found"):
            set_active_profile(paths, "ghost")

    def test_layers(self, paths: WorkspacePaths, write_manifest):
        write_manifest({"rg": {"installer": "github"}}, profile="work")
        write_manifest({"fd": {"installer": "github"}}, profile=None)
        layers = load_layers(paths, "work")
        assert [(layer.name, layer.precedence) for layer in layers] == [("profile:work", 0), ("workspace", 100)]
        assert [t.name for t in layers[0].tools] == ["rg"]
        assert [t.name for t in layers[1].tools] == ["fd"]

    def test_layers_without_profile(self, paths: WorkspacePaths):
        layers = load_layers(paths, None)
        assert [layer.name for layer in layers] == ["workspace"]
        assert layers[0].tools == []


class TestBuildContext:
    def test_settings(self, paths: WorkspacePaths, machine: MachineDescriptor, write_manifest, monkeypatch):
        monkeypatch.delenv("DWS_JOBS", raising=False)
        monkeypatch.setenv("DWS_TEST_HOME", "/home/someone")
        write_manifest({}, profile=None, active_profile="work", settings={
            "jobs": 3, "lease_timeout": 1.5, "require_checksum": True, "dotfiles_target": "$DWS_TEST_HOME/.config",
        })
        ctx = build_context(paths=paths, machine=machine)
        assert ctx.active_profile == "work"
        assert ctx.worker_count == 3
        assert ctx.lease_timeout == 1.5
        assert ctx.require_checksum is True
        assert ctx.target_root == Path("/home/someone/.config")

    def test_jobs_precedence(self, paths: WorkspacePaths, machine: MachineDescriptor, write_manifest, monkeypatch):
        write_manifest({}, profile=None, settings={"jobs": 3})
        monkeypatch.setenv("DWS_JOBS", "5")
        assert build_context(paths=paths, machine=machine).jobs == 5
        assert build_context(paths=paths, machine=machine, jobs=7).jobs == 7

    def test_bad_env_jobs(self, paths: WorkspacePaths, machine: MachineDescriptor, monkeypatch):
        monkeypatch.setenv("DWS_JOBS", "many")
        with pytest.raises(ConfigError):
            build_context(paths=paths, machine=machine)

    def test_invalid_settings(self, paths: WorkspacePaths, machine: MachineDescriptor, write_manifest):
        write_manifest({}, profile=None, settings={"jobs": 0})
        with pytest.raises(ConfigError, match="jobs"):
            build_context(paths=paths, machine=machine)

    def test_default_target_is_config_home(self, paths: WorkspacePaths, machine: MachineDescriptor, monkeypatch):
        monkeypatch.delenv("DWS_JOBS", raising=False)
        ctx = build_context(paths=paths, machine=machine)
        assert ctx.target_root == paths.config_home


class TestWorkspacePaths:
    def test_from_env(self, tmp_path: Path):
        paths = WorkspacePaths.from_env({
            "HOME": str(tmp_path),
            "XDG_CONFIG_HOME": str(tmp_path / "cfg"),
            "XDG_STATE_HOME": "relative/is/ignored",
        })
        assert paths.config_file == tmp_path / "cfg" / "dws" / "config.yml"
        assert paths.lockfile == tmp_path / ".local" / "state" / "dws" / "dws.lock"
        assert paths.tools_cache == tmp_path / ".cache" / "dws" / "tools"
        assert paths.profile_manifest("work") == tmp_path / "cfg" / "dws" / "profiles" / "work" / "dws.yml"
