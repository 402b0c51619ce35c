"""Import user scripts and resolve their entry points."""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import logging
import sys
import threading
import types
from pathlib import Path
from typing import Callable, Dict

from funcworker.app.registry import FunctionMetadata
from funcworker.errors import EntryPointError

logger = logging.getLogger(__name__)

# Conventional names tried when a script exports several functions and names none.
DEFAULT_ENTRY_POINTS = ("run", "index", "main")


class FunctionLoader:
    """Load each script file once and hand out its entry-point callable."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._modules: Dict[Path, types.ModuleType] = {}

    @staticmethod
    def script_path(metadata: FunctionMetadata) -> Path:
        path = Path(metadata.script_file).expanduser()
        if not path.is_absolute() and metadata.directory:
            path = Path(metadata.directory).expanduser() / path
        return path.resolve()

    def load_module(self, path: Path) -> types.ModuleType:
        with self._lock:
            cached = self._modules.get(path)
            if cached is not None:
                return cached

            digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
            module_name = f"_funcworker_script_{path.stem}_{digest}"
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise EntryPointError(f"Cannot import script file '{path}'")

            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            try:
                spec.loader.exec_module(module)
            except Exception as exc:
                sys.modules.pop(module_name, None)
                raise EntryPointError(f"Failed to import script file '{path}': {exc}") from exc

            logger.info("Loaded script file=%s module=%s", path, module_name)
            self._modules[path] = module
            return module

    def entry_point(self, metadata: FunctionMetadata) -> Callable:
        """Return the callable to invoke for ``metadata``."""
        module = self.load_module(self.script_path(metadata))
        return resolve_entry_point(module, metadata.entry_point)


def resolve_entry_point(module: types.ModuleType, entry_point: str | None = None) -> Callable:
    """Pick the function to call from a loaded script module.

    An explicit ``entry_point`` wins. Otherwise a module defining exactly one
    public function uses that function, and failing that ``run``, ``index``
    or ``main``.
    """
    if entry_point:
        candidate = getattr(module, entry_point, None)
        if not callable(candidate):
            raise EntryPointError(f"Entry point '{entry_point}' is not a callable in '{module.__name__}'")
        return candidate

    public_functions = [
        value
        for name, value in vars(module).items()
        if not name.startswith("_") and inspect.isfunction(value) and value.__module__ == module.__name__
    ]
    if len(public_functions) == 1:
        return public_functions[0]

    for name in DEFAULT_ENTRY_POINTS:
        candidate = getattr(module, name, None)
        if callable(candidate):
            return candidate

    raise EntryPointError(
        "Unable to determine function entry point. If the script defines several functions, "
        "name one 'run', 'index' or 'main', or set 'entry_point' in the function metadata."
    )
