"""
=============================================================================
APPLICATION LOADING
=============================================================================

Resolves which application the CLI should serve.

    "blog.app:application"        module blog.app, attribute application
    "blog:factories.default"      dotted attributes are followed

=============================================================================
ENTRY-POINT FILE
=============================================================================

When no target is given on the command line, an ``Appfile`` in the
current directory names one:

    # Appfile
    app = blog.app:application
    port = 9000              # optional

Blank lines and ``#`` comments are ignored. Unknown keys are an error,
so a typo does not silently fall back to the default app.

=============================================================================
"""

import importlib
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from .app import Application, as_application


logger = logging.getLogger(__name__)

DEFAULT_ENTRY_FILE = "Appfile"
DEFAULT_TARGET = "httpadapter.app:welcome"

_TARGET = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_][\w.]*$")


class LoaderError(Exception):
    """The application target or entry-point file could not be resolved."""


@dataclass(frozen=True)
class EntryPoint:
    target: str
    port: Optional[int] = None


def load_application(target: str) -> Application:
    """
    Import ``module:attribute`` and return it as an Application.

    Raises:
        LoaderError: On a malformed target, a failed import, a missing
                     attribute, or an object that is not an application.
    """
    if not _TARGET.match(target):
        raise LoaderError(f"Invalid application target {target!r}; expected 'module:attribute'")

    module_name, _, attr_path = target.partition(":")
    try:
        obj = importlib.import_module(module_name)
    except ImportError as e:
        raise LoaderError(f"Cannot import module {module_name!r}: {e}") from e

    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError:
            raise LoaderError(f"Module {module_name!r} has no attribute {attr_path!r}") from None

    try:
        app = as_application(obj)
    except TypeError as e:
        raise LoaderError(f"{target} is not an application: {e}") from e

    logger.debug(f"Loaded application {target} -> {app!r}")
    return app


def read_entry_file(path: str = DEFAULT_ENTRY_FILE) -> EntryPoint:
    """
    Parse an entry-point file.

    Raises:
        LoaderError: If the file cannot be read, a line is malformed,
                     ``app`` is missing or ``port`` is not an integer.
    """
    try:
        with open(path, encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as e:
        raise LoaderError(f"Cannot read entry-point file {path}: {e}") from e

    values = {}
    for lineno, line in enumerate(lines, start=1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        key, value = key.strip().lower(), value.strip()
        if not sep or not value:
            raise LoaderError(f"{path}:{lineno}: expected 'key = value'")
        if key not in ("app", "port"):
            raise LoaderError(f"{path}:{lineno}: unknown key {key!r}")
        values[key] = value

    if "app" not in values:
        raise LoaderError(f"{path}: no 'app = module:attribute' line")

    port = None
    if "port" in values:
        try:
            port = int(values["port"])
        except ValueError:
            raise LoaderError(f"{path}: port must be an integer, got {values['port']!r}") from None

    return EntryPoint(target=values["app"], port=port)


def resolve_entry_point(target: Optional[str], app_file: Optional[str] = None) -> EntryPoint:
    """
    Decide what to serve: an explicit target, else the entry-point file,
    else the built-in welcome application.

    An explicitly named ``app_file`` must exist; the default one is
    optional.
    """
    if target:
        return EntryPoint(target=target)
    if app_file is not None:
        return read_entry_file(app_file)
    if os.path.exists(DEFAULT_ENTRY_FILE):
        return read_entry_file(DEFAULT_ENTRY_FILE)
    return EntryPoint(target=DEFAULT_TARGET)
