"""Multipart request builder for GraphQL file uploads.

Implements the GraphQL multipart request convention: an ``operations`` field
with the JSON operation (files replaced by null), a ``map`` field linking each
file index to its paths, and one binary field per file keyed by its index.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

import aiohttp

from .errors import FileUploadError
from .files import as_file_list, extract_files, guess_type, has_files, is_file

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MultipartRequest:
    """A GraphQL operation split into JSON parts and file parts."""

    operations: dict[str, Any]
    map: dict[str, list[str]]
    files: list[Any] = field(default_factory=list)

    def to_form_data(self) -> aiohttp.FormData:
        """Render the request as aiohttp form data.

        Content-Type is left to aiohttp so the boundary is filled in.

        Raises:
            FileUploadError: If a file cannot be read as bytes
        """
        form = aiohttp.FormData()
        form.add_field("operations", json.dumps(self.operations))
        form.add_field("map", json.dumps(self.map))

        for index, upload in enumerate(self.files):
            content, filename, content_type = _file_part(upload, index)
            form.add_field(
                str(index),
                content,
                filename=filename,
                content_type=content_type,
            )

        return form


def needs_multipart(variables: Any, files: Any = None) -> bool:
    """Return True when the request has to take the upload path."""
    return bool(as_file_list(files)) or has_files(variables)


def build_multipart_request(
    query: str,
    variables: Mapping[str, Any] | None = None,
    files: Any = None,
) -> MultipartRequest:
    """Build the multipart parts for an operation.

    Explicit ``files`` are indexed first and mapped to ``variables.files.<i>``.
    Files embedded in ``variables`` follow, continuing the numbering. When
    explicit files are given and ``variables.files`` is missing, it is filled
    with a null placeholder per explicit file.

    Args:
        query: GraphQL document, forwarded verbatim
        variables: Operation variables, possibly containing file leaves
        files: Single file, list of files or FileList uploaded alongside

    Returns:
        MultipartRequest ready to be rendered with to_form_data()
    """
    explicit = as_file_list(files)
    for upload in explicit:
        if not is_file(upload):
            raise FileUploadError(f"Not a file: {type(upload).__name__}")

    upload_files: list[Any] = list(explicit)
    file_map: dict[str, list[str]] = {
        str(index): [f"variables.files.{index}"] for index in range(len(explicit))
    }

    extracted = extract_files(dict(variables or {}))
    clean_variables: dict[str, Any] = extracted.clean_variables

    offset = len(upload_files)
    for index, upload in enumerate(extracted.files):
        upload_files.append(upload)
        file_map[str(offset + index)] = extracted.map[str(index)]

    if explicit and clean_variables.get("files") is None:
        clean_variables["files"] = [None] * len(explicit)

    _LOGGER.debug(
        "Multipart request: %d explicit, %d embedded files",
        len(explicit),
        len(extracted.files),
    )

    return MultipartRequest(
        operations={"query": query, "variables": clean_variables},
        map=file_map,
        files=upload_files,
    )


def _file_part(upload: Any, index: int) -> tuple[bytes, str, str]:
    """Read one file leaf into (content, filename, content_type)."""
    try:
        content = upload.read()
    except (OSError, ValueError) as err:
        raise FileUploadError(f"Failed to read file {index}") from err

    if isinstance(content, (bytearray, memoryview)):
        content = bytes(content)
    if not isinstance(content, bytes):
        raise FileUploadError(
            f"File {index} read() returned {type(content).__name__}, expected bytes"
        )

    raw_name = getattr(upload, "name", None)
    filename = PurePath(raw_name).name if isinstance(raw_name, str) and raw_name else str(index)

    content_type = getattr(upload, "type", None)
    if not isinstance(content_type, str) or not content_type:
        content_type = guess_type(filename)

    return content, filename, content_type
