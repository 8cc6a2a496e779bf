from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping

from lenssync.json_types import JSONObject


def load_json_object_path(
    path: Path,
    *,
    encoding: str = "utf-8",
    strict: bool = False,
) -> JSONObject:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding=encoding))
    except (OSError, UnicodeError, json.JSONDecodeError):
        if strict:
            raise
        return {}
    if not isinstance(payload, Mapping):
        if strict:
            raise ValueError(f"{path} does not hold a JSON object")
        return {}
    return dict(payload)


def dump_json_pretty(payload: object) -> str:
    return json.dumps(payload, indent=2, sort_keys=False) + "\n"


def write_json_object_path(
    path: Path,
    payload: JSONObject,
    *,
    encoding: str = "utf-8",
) -> None:
    """Replace ``path`` with ``payload`` in one rename.

    Readers see either the previous document or the new one, never a
    partially written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(dump_json_pretty(payload), encoding=encoding)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
