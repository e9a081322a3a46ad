"""File detection and extraction for GraphQL multipart uploads.

A variables tree is walked depth-first. Every file leaf is replaced with
``None``, collected in discovery order, and recorded in an index map that
points at its dotted path inside the request payload, e.g.::

    >>> result = extract_files({"avatar": UploadFile.from_bytes(b"..", name="a.png")})
    >>> result.map
    {'0': ['variables.avatar']}
    >>> result.clean_variables
    {'avatar': None}
"""

from __future__ import annotations

import io
import mimetypes
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeGuard, runtime_checkable

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@runtime_checkable
class FileLike(Protocol):
    """Structural interface of an uploadable file."""

    name: str
    type: str
    size: int

    def read(self) -> bytes: ...


@dataclass(slots=True)
class UploadFile:
    """In-memory file value usable anywhere inside GraphQL variables."""

    name: str
    content: bytes = field(repr=False)
    type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.content)

    def read(self) -> bytes:
        return self.content

    @classmethod
    def from_bytes(
        cls,
        content: bytes,
        *,
        name: str,
        content_type: str | None = None,
    ) -> UploadFile:
        """Wrap raw bytes, guessing the MIME type from the name if not given."""
        return cls(name=name, content=content, type=content_type or guess_type(name))

    @classmethod
    def from_path(cls, path: str | Path, *, content_type: str | None = None) -> UploadFile:
        """Read a file from disk into an UploadFile."""
        path = Path(path)
        return cls.from_bytes(
            path.read_bytes(), name=path.name, content_type=content_type
        )


class FileList(list):
    """Ordered collection of files, expanded element-wise by the walker."""


@dataclass(slots=True)
class ExtractedFiles:
    """Result of extract_files()."""

    files: list[Any]
    map: dict[str, list[str]]
    clean_variables: Any


def guess_type(name: str | None) -> str:
    """Guess a MIME type for a filename."""
    if not name:
        return DEFAULT_CONTENT_TYPE
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


def is_file(value: Any) -> bool:
    """Return True when value is a file leaf.

    Binary file handles qualify natively; anything else must expose
    ``name``, ``type``, ``size`` and ``read``. Mappings never qualify.
    """
    if isinstance(value, (io.BufferedIOBase, io.RawIOBase)):
        return True
    if isinstance(value, (Mapping, str, bytes, bytearray, type)):
        return False
    return all(hasattr(value, attr) for attr in ("name", "type", "size", "read"))


def is_file_list(value: Any) -> TypeGuard[Sequence[Any]]:
    """Return True when value is an array-like to be expanded element-wise."""
    if isinstance(value, FileList):
        return True
    return isinstance(value, Sequence) and not isinstance(
        value, (str, bytes, bytearray, memoryview)
    )


def has_files(variables: Any) -> bool:
    """Return True if any file leaf is reachable inside variables."""
    if variables is None:
        return False
    if is_file(variables):
        return True
    if is_file_list(variables):
        return any(has_files(item) for item in variables)
    if isinstance(variables, Mapping):
        return any(has_files(item) for item in variables.values())
    return False


def extract_files(variables: Any, prefix: str = "variables") -> ExtractedFiles:
    """Separate file leaves from a variables tree.

    Args:
        variables: JSON-like value tree (mappings, sequences, scalars, files)
        prefix: Path segment prepended to every recorded path

    Returns:
        ExtractedFiles whose ``files[i]`` was found at ``map[str(i)][0]`` and
        whose ``clean_variables`` holds ``None`` at that position.
    """
    files: list[Any] = []
    file_map: dict[str, list[str]] = {}

    def join(path: str, segment: str) -> str:
        return f"{path}.{segment}" if path else segment

    def process(value: Any, path: str) -> Any:
        if is_file(value):
            file_map[str(len(files))] = [path]
            files.append(value)
            return None

        if is_file_list(value):
            return [process(item, join(path, str(i))) for i, item in enumerate(value)]

        if isinstance(value, Mapping):
            return {key: process(item, join(path, str(key))) for key, item in value.items()}

        return value

    clean_variables = process(variables, prefix)
    return ExtractedFiles(files=files, map=file_map, clean_variables=clean_variables)


def as_file_list(files: Any) -> list[Any]:
    """Normalize a single file, a list of files or a FileList into a list."""
    if files is None:
        return []
    if is_file(files):
        return [files]
    if is_file_list(files):
        return list(files)
    if isinstance(files, Iterable) and not isinstance(files, (str, bytes, Mapping)):
        return list(files)
    return []


def files_length(files: Any) -> int:
    """Count the files held by a single file, a list or a FileList."""
    return len(as_file_list(files))
