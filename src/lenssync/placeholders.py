"""Expansion of ``${...}`` placeholders in user supplied paths."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Mapping

from pygls.uris import to_fs_path

from lenssync.host import SettingsStore

_PLACEHOLDER_RE = re.compile(r"\$\{(?P<name>[^}]*)\}")
_ENV_PREFIX = "env:"
_CONFIG_PREFIX = "config:"


def _as_fs_path(value: str) -> str:
    if value.startswith("file:"):
        return to_fs_path(value) or value
    return value


@dataclass(frozen=True)
class PlaceholderContext:
    home: str | None = None
    workspace_folder: str | None = None
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, workspace_folder: str | None = None) -> PlaceholderContext:
        return cls(
            home=str(Path.home()),
            workspace_folder=workspace_folder,
            cwd=os.getcwd(),
            env=dict(os.environ),
        )

    def workspace_path(self) -> str | None:
        if not self.workspace_folder:
            return None
        return _as_fs_path(self.workspace_folder)

    def lookup(self, name: str) -> str | None:
        if name == "userHome":
            return self.home
        if name in ("workspaceRoot", "workspaceFolder"):
            return self.workspace_path()
        if name == "workspaceFolderBasename":
            workspace = self.workspace_path()
            return PurePath(workspace).name if workspace else None
        if name == "cwd":
            return self.cwd
        if name.startswith(_ENV_PREFIX):
            return self.env.get(name[len(_ENV_PREFIX):])
        return None


async def resolve_placeholders(
    text: str,
    context: PlaceholderContext,
    store: SettingsStore | None = None,
) -> str:
    """Substitute every known placeholder in ``text``.

    ``${config:KEY}`` reads ``KEY`` from ``store`` and only substitutes
    string values. Anything that cannot be resolved is kept verbatim.
    """
    replacements: dict[str, str] = {}
    for match in _PLACEHOLDER_RE.finditer(text):
        name = match.group("name")
        if name in replacements:
            continue
        value = context.lookup(name)
        if value is None and store is not None and name.startswith(_CONFIG_PREFIX):
            configured = await store.get(name[len(_CONFIG_PREFIX):], None)
            value = configured if isinstance(configured, str) else None
        if value is not None:
            replacements[name] = value

    def _substitute(match: re.Match[str]) -> str:
        return replacements.get(match.group("name"), match.group(0))

    return _PLACEHOLDER_RE.sub(_substitute, text)
