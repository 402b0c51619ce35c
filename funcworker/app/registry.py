"""Process-lifetime table of loaded functions."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from funcworker.errors import FunctionNotFoundError
from funcworker.protocol.types import RpcFunctionMetadata


@dataclass(frozen=True)
class FunctionMetadata:
    """Metadata recorded for one function id by a load request."""

    function_id: str
    name: str
    directory: str
    script_file: str
    entry_point: Optional[str] = None

    @classmethod
    def from_wire(cls, function_id: str, metadata: RpcFunctionMetadata) -> "FunctionMetadata":
        return cls(
            function_id=function_id,
            name=metadata.name,
            directory=metadata.directory,
            script_file=metadata.script_file,
            entry_point=metadata.entry_point or None,
        )


@dataclass(frozen=True)
class RegistryLookup:
    """Explicit outcome of resolving a function id."""

    function_id: str
    metadata: Optional[FunctionMetadata] = None

    @property
    def found(self) -> bool:
        return self.metadata is not None

    def unwrap(self) -> FunctionMetadata:
        if self.metadata is None:
            raise FunctionNotFoundError(self.function_id)
        return self.metadata


class FunctionRegistry:
    """Function id to metadata table owned by the worker runtime."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._functions: Dict[str, FunctionMetadata] = {}

    def register(self, function_id: str, metadata: FunctionMetadata) -> None:
        """Insert or replace the entry for ``function_id``; the last load wins."""
        with self._lock:
            self._functions[function_id] = metadata

    def resolve(self, function_id: str) -> RegistryLookup:
        with self._lock:
            return RegistryLookup(function_id=function_id, metadata=self._functions.get(function_id))

    def lookup(self, function_id: str) -> FunctionMetadata:
        """Return metadata for ``function_id`` or raise ``FunctionNotFoundError``."""
        return self.resolve(function_id).unwrap()

    def has(self, function_id: str) -> bool:
        return self.resolve(function_id).found

    def function_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._functions.keys())
