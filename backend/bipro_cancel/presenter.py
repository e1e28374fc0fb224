"""
Presentation boundary for the cancellation document.

Turns a stored DocumentArtifact into a downloadable file or a short-lived
preview file. Previews are valid for a bounded time window; afterwards the
temporary file is removed and the handle reports itself as expired.

The pipeline never depends on this module directly: it only receives an
object satisfying the Presenter protocol.
"""

from __future__ import annotations

import io
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from bipro_cancel.errors import PresentationError
from bipro_cancel.models import DocumentArtifact


DEFAULT_DOWNLOAD_FILENAME = "kuendigung.pdf"
DEFAULT_PREVIEW_TTL_SECONDS = 60.0


class Presenter(Protocol):
    """Capability to show a document artifact to the user."""

    def download(self, artifact: DocumentArtifact | None, filename: str = ...) -> Path:
        ...

    def preview(self, artifact: DocumentArtifact | None) -> PreviewHandle:
        ...


@dataclass
class DocumentInfo:
    """Result of inspecting a document artifact."""

    size_bytes: int
    is_pdf: bool
    page_count: int
    error: str | None = None


@dataclass
class PreviewHandle:
    """A temporary preview file and the time after which it is invalid."""

    path: Path
    expires_at: float  # time.monotonic() deadline
    info: DocumentInfo | None = None

    def is_expired(self, now: float | None = None) -> bool:
        current = time.monotonic() if now is None else now
        return current >= self.expires_at or not self.path.exists()


def _sanitize_filename(filename: str) -> str:
    """
    Sanitize a download filename.

    Strips directory components and rejects empty or dot-only names.

    Raises:
        PresentationError: If the filename is empty or invalid after sanitization.
    """
    name = filename.replace("\\", "/").split("/")[-1].strip()
    if not name or name in (".", ".."):
        raise PresentationError(f"Invalid filename: {filename!r}")
    if ".." in name:
        name = name.replace("..", "_")
    return name


def _write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write to a temp file, fsync, then rename to the final path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    tmp_path.replace(path)


def inspect_document(artifact: DocumentArtifact) -> DocumentInfo:
    """
    Inspect a document artifact with pypdf.

    Unreadable documents are reported through ``error``, not raised: the
    pipeline treats the payload as opaque and a preview may still be useful.
    """
    payload = artifact.payload
    is_pdf = payload.startswith(b"%PDF")
    try:
        reader = PdfReader(io.BytesIO(payload))
        page_count = len(reader.pages)
    except PdfReadError as e:
        return DocumentInfo(len(payload), is_pdf, 0, error=f"parse_error: {e}")
    except Exception as e:
        # pypdf raises assorted errors on truncated input
        return DocumentInfo(len(payload), is_pdf, 0, error=f"parse_error: {e}")
    return DocumentInfo(len(payload), is_pdf, page_count)


class ArtifactPresenter:
    """
    File-based presenter.

    Downloads are written into ``download_dir``; previews into
    ``preview_dir`` under random names and removed once expired.
    """

    def __init__(
        self,
        download_dir: Path,
        preview_dir: Path | None = None,
        *,
        preview_ttl_seconds: float = DEFAULT_PREVIEW_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._download_dir = download_dir
        self._preview_dir = preview_dir or download_dir / ".preview"
        self._ttl = preview_ttl_seconds
        self._clock = clock
        self._previews: list[PreviewHandle] = []

    @property
    def open_previews(self) -> list[PreviewHandle]:
        """Previews not yet released."""
        return list(self._previews)

    def download(
        self,
        artifact: DocumentArtifact | None,
        filename: str = DEFAULT_DOWNLOAD_FILENAME,
    ) -> Path:
        """
        Save the document as a file.

        Returns:
            Path of the written file.

        Raises:
            PresentationError: If no artifact is given or the file cannot be written.
        """
        if artifact is None:
            raise PresentationError("No cancellation document available for download")
        dest = self._download_dir / _sanitize_filename(filename)
        try:
            _write_bytes_atomic(dest, artifact.payload)
        except OSError as e:
            raise PresentationError(f"Could not write {dest}: {e}") from e
        return dest

    def preview(self, artifact: DocumentArtifact | None) -> PreviewHandle:
        """
        Open a time-limited preview of the document.

        Releases previews that have already expired before creating the new one.
        The handle carries what pypdf could read from the document; a payload
        that does not parse is still previewed.

        Raises:
            PresentationError: If no artifact is given or the file cannot be written.
        """
        if artifact is None:
            raise PresentationError("No cancellation document available for preview")
        self.release_expired()
        dest = self._preview_dir / f"preview_{secrets.token_hex(4)}.pdf"
        try:
            _write_bytes_atomic(dest, artifact.payload)
        except OSError as e:
            raise PresentationError(f"Could not write {dest}: {e}") from e
        handle = PreviewHandle(
            path=dest,
            expires_at=self._clock() + self._ttl,
            info=inspect_document(artifact),
        )
        self._previews.append(handle)
        return handle

    def release_expired(self) -> int:
        """
        Delete preview files whose time window has passed.

        Returns:
            Number of previews released.
        """
        now = self._clock()
        expired = [h for h in self._previews if h.is_expired(now)]
        for handle in expired:
            handle.path.unlink(missing_ok=True)
            self._previews.remove(handle)
        return len(expired)
