"""Find installed editor extensions on disk."""

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog

from extperf.models import Component

log = structlog.get_logger()

BUILTIN_ROOTS = (
    "/usr/share/code/resources/app/extensions",
    "/usr/share/code-insiders/resources/app/extensions",
    "/Applications/Visual Studio Code.app/Contents/Resources/app/extensions",
    "/Applications/Visual Studio Code - Insiders.app/Contents/Resources/app/extensions",
)


def default_search_paths() -> list[Path]:
    home = Path.home()
    return [
        home / ".vscode-insiders" / "extensions",
        home / ".vscode" / "extensions",
        home / ".vscode-server" / "extensions",
        *(Path(root) for root in BUILTIN_ROOTS),
    ]


def is_builtin(component: Component) -> bool:
    """True for extensions shipped inside the editor installation."""
    return component.install_path.startswith(BUILTIN_ROOTS)


def contributions_from_manifest(manifest: dict[str, Any]) -> frozenset[str]:
    """Reduce a package.json to the feature flags the estimate heuristic uses."""
    contributes = manifest.get("contributes")
    if not isinstance(contributes, dict):
        contributes = {}
    features: set[str] = set()
    for key, flag in (
        ("languages", "languages"),
        ("grammars", "grammars"),
        ("themes", "themes"),
        ("iconThemes", "icon_themes"),
        ("debuggers", "debuggers"),
        ("views", "views"),
    ):
        if contributes.get(key):
            features.add(flag)
    commands = contributes.get("commands")
    if isinstance(commands, list) and len(commands) > 10:
        features.add("many_commands")
    activation_events = manifest.get("activationEvents")
    if isinstance(activation_events, list) and "*" in activation_events:
        features.add("wildcard_activation")
    if "webview" in str(manifest.get("main") or ""):
        features.add("webview")
    return frozenset(features)


def _manifest_dir(entry: Path) -> Path | None:
    nested = entry / "extension"
    if (nested / "package.json").is_file():
        return nested
    if (entry / "package.json").is_file():
        return entry
    return None


def load_extension(entry: Path) -> Component | None:
    """Build a Component from one extension directory, or None if it has no valid manifest."""
    root = _manifest_dir(entry)
    if root is None:
        return None
    try:
        manifest = json.loads((root / "package.json").read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.debug("extension_manifest_invalid", path=str(root), error=str(exc))
        return None
    if not isinstance(manifest, dict):
        return None

    name = manifest.get("name") or entry.name
    publisher = manifest.get("publisher")
    component_id = f"{publisher}.{name}" if publisher else name
    return Component(
        id=component_id,
        display_name=manifest.get("displayName") or component_id,
        install_path=str(root),
        is_active=True,
        version=manifest.get("version") or "unknown",
        contributions=contributions_from_manifest(manifest),
    )


def discover_extensions(search_paths: Iterable[Path | str] | None = None) -> list[Component]:
    """
    Scan extension directories and return one Component per extension.

    Every discovered extension is reported as active: on-disk discovery has
    no view of the editor's activation state.
    """
    paths = default_search_paths() if search_paths is None else [Path(p) for p in search_paths]
    found: list[Component] = []
    seen: set[str] = set()

    for base in paths:
        try:
            if not base.is_dir():
                continue
            entries = sorted(p for p in base.iterdir() if p.is_dir())
        except OSError as exc:
            log.debug("extension_dir_unreadable", path=str(base), error=str(exc))
            continue

        for entry in entries:
            component = load_extension(entry)
            if component is None or component.id in seen:
                continue
            seen.add(component.id)
            found.append(component)

    return found
