"""JSON persistence for the configuration store.

Purpose
-------
Read ``config.json`` into a :class:`~darp.domain.model.ConfigurationStore` and
write it back after a successful mutation. Parsing, error handling, and
logging policies for the on-disk document live here.

Contents
--------
* :func:`load_store` – read or create the document; tolerate corruption.
* :func:`save_store` – serialise and replace the document atomically.
* :func:`read_json` / :func:`write_json_atomic` – small helpers shared with
  the deploy pass for ``portmap.json``.

System Role
-----------
Called by the CLI at the start (load) and end (save) of each mutating command.
The core never touches the file directly.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..domain.errors import InvalidFormat, IOFailure
from ..domain.model import ConfigurationStore
from ..observability import log_debug, log_error

_CORRUPT_SUFFIX = ".corrupt"


def load_store(path: Path) -> ConfigurationStore:
    """Return the store persisted at *path*, creating ``{}`` when it is missing.

    A document that is not valid JSON, or whose shape does not match the data
    model, yields an empty store. The unreadable bytes are kept next to the
    original as ``<name>.corrupt`` so the next save cannot destroy them.

    Raises
    ------
    IOFailure
        If the file or its parent directory cannot be read or created.

    Examples
    --------
    >>> from tempfile import TemporaryDirectory
    >>> tmp = TemporaryDirectory()
    >>> target = Path(tmp.name) / "nested" / "config.json"
    >>> load_store(target).domains
    {}
    >>> target.read_text(encoding="utf-8")
    '{}'
    >>> tmp.cleanup()
    """

    try:
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("{}", encoding="utf-8")
            log_debug("config_created", path=str(path))
            return ConfigurationStore()
        payload = path.read_bytes()
    except OSError as exc:
        raise IOFailure(f"Failed to read configuration {path}: {exc}") from exc

    log_debug("config_read", path=str(path), size=len(payload))
    try:
        return ConfigurationStore.from_dict(json.loads(payload or b"{}"))
    except (json.JSONDecodeError, UnicodeDecodeError, InvalidFormat) as exc:
        backup = path.with_name(path.name + _CORRUPT_SUFFIX)
        log_error("config_corrupt", path=str(path), backup=str(backup), error=str(exc))
        try:
            backup.write_bytes(payload)
        except OSError as backup_exc:
            raise IOFailure(f"Failed to preserve corrupt configuration {path}: {backup_exc}") from backup_exc
        return ConfigurationStore()


def save_store(store: ConfigurationStore, path: Path) -> None:
    """Persist *store* at *path* in full, replacing the previous document atomically."""

    write_json_atomic(path, store.to_dict())
    log_debug("config_saved", path=str(path), domains=len(store.domains), environments=len(store.environments))


def read_json(path: Path) -> Any:
    """Decode the JSON document at *path*.

    Raises
    ------
    IOFailure
        If the file cannot be read.
    InvalidFormat
        If the content is not valid JSON.
    """

    try:
        payload = path.read_bytes()
    except OSError as exc:
        raise IOFailure(f"Failed to read {path}: {exc}") from exc
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidFormat(f"File {path} is not valid JSON: {exc}") from exc


def write_json_atomic(path: Path, data: Any) -> None:
    """Write *data* as pretty JSON to a sibling temp file, then rename it over *path*."""

    write_text_atomic(path, json.dumps(data, indent=2) + "\n")


def write_text_atomic(path: Path, text: str) -> None:
    """Replace *path* with *text* so readers never observe a truncated file."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise IOFailure(f"Failed to write {path}: {exc}") from exc
