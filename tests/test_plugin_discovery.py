"""Tests for command plugin discovery and the registry."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from conftest import make_settings

from osintrix.config import CommandConfig, PluginsConfig
from osintrix.errors import DuplicateCommand
from osintrix.plugin import CommandRegistry, build_registry, descriptor_from_spec, discover
from osintrix.plugin.registry import group_by_category
from osintrix.types import CommandOutcome, PluginDescriptor

_GOOD = """
from osintrix.plugin import hookimpl
from osintrix.types import CommandOutcome

async def run(request, context):
    return CommandOutcome.success("pong")

class PingPlugin:
    @hookimpl
    def osintrix_command(self):
        return {"name": "ping", "category": "user", "cost": 1, "handler": run}
"""

_NO_HANDLER = """
from osintrix.plugin import hookimpl

class BrokenPlugin:
    @hookimpl
    def osintrix_command(self):
        return {"name": "broken", "category": "user"}
"""

_IMPORT_ERROR = """
import definitely_not_a_real_module_xyz
"""

_RAISING_HOOK = """
from osintrix.plugin import hookimpl

class ExplodingPlugin:
    @hookimpl
    def osintrix_command(self):
        raise RuntimeError("boom")
"""

_MODULE_LEVEL = """
from osintrix.plugin import hookimpl
from osintrix.types import CommandOutcome

async def run(request, context):
    return CommandOutcome.success("hi")

@hookimpl
def osintrix_command():
    return {"name": "hello", "handler": run}
"""


def _write(root: Path, rel: str, source: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source))


async def _noop(request, context):
    return CommandOutcome.success("ok")


def _descriptor(name: str, source: str = "") -> PluginDescriptor:
    return PluginDescriptor(
        command_name=name, category="user", cost=0, handler=_noop, source=source
    )


class TestDiscoverDirectory:
    def test_registers_well_formed_and_skips_malformed(self, tmp_path):
        root = tmp_path / "plugins_a"
        _write(root, "good.py", _GOOD)
        _write(root, "bad.py", _NO_HANDLER)

        diagnostics: list[str] = []
        descriptors = discover(root, diagnostics=diagnostics)

        assert [d.command_name for d in descriptors] == ["ping"]
        assert descriptors[0].cost == 1
        assert len(diagnostics) == 1
        assert "broken" in diagnostics[0]

    def test_recurses_into_subdirectories(self, tmp_path):
        root = tmp_path / "plugins_b"
        _write(root, "utility/deep/good.py", _GOOD)
        descriptors = discover(root)
        assert [d.command_name for d in descriptors] == ["ping"]

    def test_import_error_and_raising_hook_do_not_abort(self, tmp_path):
        root = tmp_path / "plugins_c"
        _write(root, "a_missing_dep.py", _IMPORT_ERROR)
        _write(root, "b_exploding.py", _RAISING_HOOK)
        _write(root, "c_good.py", _GOOD)

        diagnostics: list[str] = []
        descriptors = discover(root, diagnostics=diagnostics)

        assert [d.command_name for d in descriptors] == ["ping"]
        assert len(diagnostics) == 2

    def test_private_files_skipped(self, tmp_path):
        root = tmp_path / "plugins_d"
        _write(root, "_helpers.py", _GOOD)
        assert discover(root) == []

    def test_module_level_hook(self, tmp_path):
        root = tmp_path / "plugins_e"
        _write(root, "hello.py", _MODULE_LEVEL)
        descriptors = discover(root)
        assert len(descriptors) == 1
        assert descriptors[0].command_name == "hello"
        assert descriptors[0].category == "uncategorized"

    def test_missing_location_is_a_diagnostic(self):
        diagnostics: list[str] = []
        assert discover("osintrix_no_such_package", diagnostics=diagnostics) == []
        assert len(diagnostics) == 1


class TestDiscoverPackage:
    def test_builtin_commands(self):
        names = {d.command_name for d in discover("osintrix.plugins")}
        assert {"ceknik", "limit", "menu", "addlimit"} <= names

    def test_builtin_ceknik_descriptor(self):
        ceknik = next(d for d in discover("osintrix.plugins") if d.command_name == "ceknik")
        assert ceknik.cost == 10
        assert ceknik.category == "osint"
        assert ceknik.privileged_only is False


class TestDescriptorFromSpec:
    def test_rejects_non_dict(self):
        with pytest.raises(ValueError):
            descriptor_from_spec(["ping"])

    @pytest.mark.parametrize("name", ["", "   ", None, 42, "two words"])
    def test_rejects_bad_names(self, name):
        with pytest.raises(ValueError):
            descriptor_from_spec({"name": name, "handler": _noop})

    @pytest.mark.parametrize("cost", [-1, "10", True, 1.5])
    def test_rejects_bad_costs(self, cost):
        with pytest.raises(ValueError):
            descriptor_from_spec({"name": "x", "handler": _noop, "cost": cost})

    def test_normalizes_name(self):
        d = descriptor_from_spec({"name": " Ping ", "handler": _noop}, source="mod")
        assert d.command_name == "ping"
        assert d.source == "mod"


class TestCommandRegistry:
    def test_duplicate_raises_and_keeps_first(self):
        registry = CommandRegistry()
        first = _descriptor("ping", source="first")
        registry.register(first)
        with pytest.raises(DuplicateCommand):
            registry.register(_descriptor("ping", source="second"))
        assert registry.get("ping") is first
        assert len(registry) == 1

    def test_listeners_see_existing_and_new(self):
        registry = CommandRegistry()
        registry.register(_descriptor("a"))
        seen: list[str] = []
        registry.subscribe(lambda d: seen.append(d.command_name))
        registry.register(_descriptor("b"))
        assert seen == ["a", "b"]

    def test_rejected_duplicate_not_announced(self):
        registry = CommandRegistry()
        seen: list[str] = []
        registry.subscribe(lambda d: seen.append(d.source))
        registry.register(_descriptor("a", source="one"))
        with pytest.raises(DuplicateCommand):
            registry.register(_descriptor("a", source="two"))
        assert seen == ["one"]

    def test_group_by_category(self):
        registry = CommandRegistry()
        registry.register(_descriptor("a"))
        registry.register(
            PluginDescriptor(command_name="b", category="owner", cost=0, handler=_noop)
        )
        grouped = group_by_category(registry.descriptors())
        assert list(grouped) == ["user", "owner"]
        owner = group_by_category(registry.descriptors(), "OWNER")
        assert [d.command_name for d in owner["owner"]] == ["b"]
        assert list(owner) == ["owner"]


class TestBuildRegistry:
    def test_duplicates_across_locations_first_wins(self, tmp_path):
        first = tmp_path / "first_loc"
        second = tmp_path / "second_loc"
        _write(first, "ping.py", _GOOD)
        _write(second, "ping.py", _GOOD)
        s = make_settings(
            plugins=PluginsConfig(locations=[str(first), str(second)], entrypoints=False)
        )
        registry = build_registry(s)
        assert registry.names() == ["ping"]
        assert "first_loc" in registry.get("ping").source

    def test_disabled_command_skipped(self):
        s = make_settings(
            plugins=PluginsConfig(locations=["osintrix.plugins"], entrypoints=False),
            commands={"addlimit": CommandConfig(enabled=False)},
        )
        registry = build_registry(s)
        assert "addlimit" not in registry
        assert "ceknik" in registry

    def test_malformed_plugin_absent_from_dispatch_surface(self, tmp_path):
        root = tmp_path / "mixed_loc"
        _write(root, "good.py", _GOOD)
        _write(root, "bad.py", _NO_HANDLER)
        s = make_settings(plugins=PluginsConfig(locations=[str(root)], entrypoints=False))
        registry = build_registry(s)
        assert registry.names() == ["ping"]
        assert "broken" not in registry
