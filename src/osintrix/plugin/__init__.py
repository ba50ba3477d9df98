"""Plugin system for osintrix.

Command plugins are discovered at startup from configured locations (dotted
packages or plain directories, scanned recursively) and from the "osintrix"
entry-point group.  Each plugin implements the ``osintrix_command`` hook and
returns a command spec dict; specs are validated before registration.

Discovery is partial-failure tolerant: a module that fails to import, a
plugin that fails pluggy validation, or a spec that is malformed is skipped
with a logged diagnostic and never aborts discovery of the rest.

Usage:
    from osintrix.plugin import build_registry

    registry = build_registry()
    descriptor = registry.get("ceknik")
"""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import pkgutil
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

import pluggy

from osintrix.config import Settings, get_settings
from osintrix.errors import DuplicateCommand
from osintrix.logger import logger
from osintrix.plugin.hookspecs import OsintrixSpec
from osintrix.plugin.registry import CommandRegistry
from osintrix.types import PluginDescriptor

__all__ = [
    "CommandRegistry",
    "build_registry",
    "descriptor_from_spec",
    "discover",
    "get_plugin_manager",
    "hookimpl",
]

hookimpl = pluggy.HookimplMarker("osintrix")

_HOOK_NAME = "osintrix_command"
_EXTERNAL_PREFIX = "_osintrix_ext"


def get_plugin_manager() -> pluggy.PluginManager:
    pm = pluggy.PluginManager("osintrix")
    pm.add_hookspecs(OsintrixSpec)
    return pm


# ---------------------------------------------------------------------------
# Spec validation
# ---------------------------------------------------------------------------


def descriptor_from_spec(spec: Any, source: str = "") -> PluginDescriptor:
    """Validate a hook result and turn it into a descriptor.

    Raises:
        ValueError: if the spec lacks a usable name or a callable handler.
    """
    if not isinstance(spec, dict):
        raise ValueError(f"command spec must be a dict, got {type(spec).__name__}")

    name = spec.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError("command spec needs a non-empty 'name'")
    name = name.strip().lower()
    if any(ch.isspace() for ch in name):
        raise ValueError(f"command name {name!r} must be a single word")

    handler = spec.get("handler")
    if not callable(handler):
        raise ValueError(f"command {name!r} needs a callable 'handler'")

    cost = spec.get("cost", 0)
    if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
        raise ValueError(f"command {name!r} has invalid cost {cost!r}")

    return PluginDescriptor(
        command_name=name,
        category=str(spec.get("category") or "uncategorized"),
        cost=cost,
        handler=handler,
        description=str(spec.get("description") or ""),
        privileged_only=bool(spec.get("privileged_only", False)),
        source=source,
    )


# ---------------------------------------------------------------------------
# Module loading
# ---------------------------------------------------------------------------


def _iter_package_modules(package_name: str, diagnostics: list[str]) -> list[ModuleType]:
    """Import a dotted package and every module beneath it."""
    try:
        package = importlib.import_module(package_name)
    except Exception as exc:
        diagnostics.append(f"{package_name}: {exc}")
        logger.warning("Plugin package failed to import", package=package_name, error=str(exc))
        return []

    modules: list[ModuleType] = [package]
    if not hasattr(package, "__path__"):
        return modules

    def _onerror(name: str) -> None:
        exc = sys.exc_info()[1]
        diagnostics.append(f"{name}: {exc}")
        logger.warning("Plugin subpackage failed to import", module=name, error=str(exc))

    for info in pkgutil.walk_packages(package.__path__, f"{package.__name__}.", onerror=_onerror):
        try:
            modules.append(importlib.import_module(info.name))
        except Exception as exc:
            diagnostics.append(f"{info.name}: {exc}")
            logger.warning("Plugin module failed to import", module=info.name, error=str(exc))
    return modules


def _load_file(path: Path, root: Path) -> ModuleType:
    rel = path.relative_to(root).with_suffix("")
    module_name = ".".join((_EXTERNAL_PREFIX, root.name, *rel.parts))
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot build import spec for {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def _iter_directory_modules(root: Path, diagnostics: list[str]) -> list[ModuleType]:
    """Load every ``*.py`` file under *root*, recursively, skipping ``_private`` files."""
    modules: list[ModuleType] = []
    for path in sorted(root.rglob("*.py")):
        rel_parts = path.relative_to(root).parts
        if any(part.startswith("_") for part in rel_parts):
            continue
        try:
            modules.append(_load_file(path, root))
        except Exception as exc:
            diagnostics.append(f"{path}: {exc}")
            logger.warning("Plugin file failed to load", path=str(path), error=str(exc))
    return modules


def _plugin_objects(module: ModuleType) -> list[tuple[str, object]]:
    """Find hook implementers in *module*: the module itself or classes defined in it."""
    found: list[tuple[str, object]] = []
    marker = f"{hookimpl.project_name}_impl"

    if hasattr(getattr(module, _HOOK_NAME, None), marker):
        found.append((module.__name__, module))

    for attr, obj in inspect.getmembers(module, inspect.isclass):
        if obj.__module__ != module.__name__:
            continue
        if hasattr(getattr(obj, _HOOK_NAME, None), marker):
            found.append((f"{module.__name__}:{attr}", obj()))
    return found


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _describe(
    pm: pluggy.PluginManager,
    plugins: list[object],
    diagnostics: list[str],
) -> list[PluginDescriptor]:
    """Call the command hook on each of *plugins*, one at a time."""
    wanted = {id(p) for p in plugins}
    descriptors: list[PluginDescriptor] = []
    # Impls are called individually so one raising hook cannot hide the others.
    for impl in pm.hook.osintrix_command.get_hookimpls():
        if id(impl.plugin) not in wanted:
            continue
        source = impl.plugin_name
        try:
            descriptors.append(descriptor_from_spec(impl.function(), source=source))
        except Exception as exc:
            diagnostics.append(f"{source}: {exc}")
            logger.warning("Rejected command plugin", plugin=source, error=str(exc))
    return descriptors


def discover(
    root: str | Path,
    *,
    pm: pluggy.PluginManager | None = None,
    diagnostics: list[str] | None = None,
) -> list[PluginDescriptor]:
    """Load command plugins from *root* and return their validated descriptors.

    *root* is either an existing directory (every ``*.py`` file below it is
    loaded) or a dotted package name (every module below it is imported).
    Failures are appended to *diagnostics* and logged; nothing is raised.
    """
    if pm is None:
        pm = get_plugin_manager()
    if diagnostics is None:
        diagnostics = []

    root_path = Path(root)
    if root_path.is_dir():
        modules = _iter_directory_modules(root_path, diagnostics)
    else:
        modules = _iter_package_modules(str(root), diagnostics)

    registered: list[object] = []
    for module in modules:
        try:
            candidates = _plugin_objects(module)
        except Exception as exc:
            diagnostics.append(f"{module.__name__}: {exc}")
            logger.warning(
                "Plugin class failed to instantiate", module=module.__name__, error=str(exc)
            )
            continue
        for name, plugin in candidates:
            try:
                pm.register(plugin, name=name)
            except Exception as exc:
                diagnostics.append(f"{name}: {exc}")
                logger.warning("Plugin failed validation", plugin=name, error=str(exc))
                continue
            registered.append(plugin)

    return _describe(pm, registered, diagnostics)


def _discover_entrypoints(
    pm: pluggy.PluginManager, diagnostics: list[str]
) -> list[PluginDescriptor]:
    before = {id(p) for p in pm.get_plugins()}
    try:
        count = pm.load_setuptools_entrypoints("osintrix")
    except Exception as exc:
        diagnostics.append(f"entry points: {exc}")
        logger.warning("Entry-point plugin discovery failed", error=str(exc))
        return []
    if count:
        logger.info("Discovered third-party plugins", count=count)
    new = [p for p in pm.get_plugins() if id(p) not in before]
    return _describe(pm, new, diagnostics)


def build_registry(
    settings: Settings | None = None,
    *,
    registry: CommandRegistry | None = None,
) -> CommandRegistry:
    """Discover every configured plugin location and register the results.

    The first descriptor to claim a command name wins; later duplicates are
    logged and dropped.  Commands disabled under ``[commands.<name>]`` are
    skipped.
    """
    s = settings or get_settings()
    registry = registry if registry is not None else CommandRegistry()
    pm = get_plugin_manager()
    diagnostics: list[str] = []

    descriptors: list[PluginDescriptor] = []
    for location in s.plugins.locations:
        descriptors.extend(discover(location, pm=pm, diagnostics=diagnostics))
    if s.plugins.entrypoints:
        descriptors.extend(_discover_entrypoints(pm, diagnostics))

    for descriptor in descriptors:
        if not s.command_enabled(descriptor.command_name):
            logger.info("Command disabled via config", command=descriptor.command_name)
            continue
        try:
            registry.register(descriptor)
        except DuplicateCommand as exc:
            logger.warning(
                "Duplicate command ignored", command=descriptor.command_name, error=str(exc)
            )
            continue
        logger.info(
            "Loaded command",
            command=descriptor.command_name,
            category=descriptor.category,
            cost=descriptor.cost,
        )

    logger.info(
        "Command registry ready",
        commands=registry.names(),
        rejected=len(diagnostics),
    )
    return registry
