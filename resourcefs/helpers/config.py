"""Optional configuration file for the resourcefs tools.

A configuration file is a Python file named ``.resourcefscfg.py`` that only contains constant assignments.
It is parsed, never executed. Recognized names:

- ``APP_ID``: the application identifier used to resolve the user data directory.
- ``AUTHOR``: the application author, used on some platforms for the user data directory.
- ``RESOURCE_PATHS``: extra resource directories, separated by ``os.pathsep``.
- ``USER_DATA_DIR``: an explicit user data directory.
"""

from __future__ import annotations

import ast
import importlib.machinery
import importlib.util
import os
from pathlib import Path
from typing import TYPE_CHECKING

from resourcefs.helpers.logging import get_logger

if TYPE_CHECKING:
    from types import ModuleType

log = get_logger(__name__)

CONFIG_NAME = ".resourcefscfg.py"

DEFAULTS = {
    "APP_ID": None,
    "AUTHOR": "",
    "RESOURCE_PATHS": "",
    "USER_DATA_DIR": None,
}


def load(paths: list[Path | str] | Path | str | None) -> ModuleType:
    """Attempt to load one configuration from the provided path(s).

    Names that are not set in the configuration file get their value from ``DEFAULTS``.
    """

    if isinstance(paths, (Path, str)):
        paths = [paths]

    config_spec = importlib.machinery.ModuleSpec("config", None)
    config = importlib.util.module_from_spec(config_spec)
    config.__dict__.update(DEFAULTS)

    if config_file := _find_config_file(paths):
        log.debug("Loading configuration from %s", config_file)
        config.__dict__.update(_parse_ast(config_file.read_bytes()))

    return config


def resource_paths(config: ModuleType) -> list[Path]:
    """Return the extra resource directories of a loaded configuration."""
    value = getattr(config, "RESOURCE_PATHS", "") or ""
    return [Path(path) for path in value.split(os.pathsep) if path]


def _parse_ast(code: bytes) -> dict[str, str | int]:
    # Only allow basic value assignments
    obj = {}

    try:
        module = ast.parse(code)
    except SyntaxError as e:
        log.warning("Ignoring configuration file with invalid syntax")
        log.debug("", exc_info=e)
        return obj

    for statement in module.body:
        if (
            not isinstance(statement, ast.Assign)
            or len(statement.targets) != 1
            or not isinstance(statement.value, ast.Constant)
        ):
            log.debug("Skipping non-constant assignment")
            continue

        target = statement.targets[0]
        if not isinstance(target, ast.Name) or not isinstance(target.ctx, ast.Store):
            log.debug("Skipping non-name assignment store")
            continue

        obj[target.id] = statement.value.value

    return obj


def _find_config_file(paths: list[Path | str] | None) -> Path | None:
    """Find a config file in the given path(s) or any of their parents and return it.

    Parts of the path are allowed to not exist, and the last part may be a filename.
    The filesystem root itself is never searched.
    """

    if not paths:
        return None

    for path in paths:
        if not path:
            continue

        cur_path = Path(path).absolute()

        while not cur_path.exists() and cur_path.name != "":
            cur_path = cur_path.parent

        while cur_path.name != "":
            cur_config = cur_path.joinpath(CONFIG_NAME)
            if cur_config.is_file():
                return cur_config
            cur_path = cur_path.parent

    return None
