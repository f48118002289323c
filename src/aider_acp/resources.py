"""Materialization of ACP resource blocks on disk."""

import base64
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


class ResourceWriteError(OSError):
    """Raised when an embedded resource cannot be written."""


def normalize_resource_uri(uri: str | None, working_dir: str) -> str | None:
    """Turn a resource URI into a normalized filesystem path.

    ``file://`` URIs are percent-decoded, absolute paths are normalized and
    anything else is resolved against ``working_dir``. Returns None for a
    missing or blank URI.
    """
    if not uri:
        return None

    trimmed = uri.strip()
    if not trimmed:
        return None

    if trimmed.startswith("file://"):
        parsed = urlparse(trimmed)
        path = unquote(parsed.path) if parsed.path else trimmed[len("file://") :]
        return os.path.normpath(path)

    if os.path.isabs(trimmed):
        return os.path.normpath(trimmed)

    return os.path.normpath(os.path.join(working_dir, trimmed))


def _atomic_write(path: Path, content: bytes) -> None:
    """Write content to file atomically using temp file + rename."""
    fd, temp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def write_embedded_resource(target: str, text: str | None = None, blob: str | None = None) -> Path:
    """Write inline text or base64 blob content to ``target``.

    Parent directories are created as needed.

    Raises:
        ResourceWriteError: The resource carries neither text nor blob, or
            the write failed.
    """
    path = Path(target)

    if text is not None:
        content = text.encode("utf-8")
    elif blob is not None:
        try:
            content = base64.b64decode(blob)
        except ValueError as e:
            raise ResourceWriteError(f"Invalid base64 content for {target}: {e}") from e
    else:
        raise ResourceWriteError(f"Unsupported embedded resource format for {target}")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, content)
    except OSError as e:
        raise ResourceWriteError(f"Failed to write embedded resource to {target}: {e}") from e

    logger.debug(f"Materialized embedded resource {target} ({len(content)} bytes)")
    return path
