"""
In-memory cache for the artifacts produced by a cancellation run.

Holds at most one document and one structured-text artifact. Writes are
full replacements (last write wins), clears are idempotent. Nothing is
persisted beyond process lifetime.

Runs against a store are serialized through ``run_lock``: two runs
interleaving writes would break the guarantee that the cached XML was
mapped from the cached document.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from bipro_cancel.models import ArtifactKind, DocumentArtifact, StructuredTextArtifact


class ArtifactStore:
    """Last-write-wins cache with one slot per artifact kind."""

    def __init__(self) -> None:
        self._document: DocumentArtifact | None = None
        self._structured_text: StructuredTextArtifact | None = None
        self._run_lock = asyncio.Lock()

    @property
    def run_lock(self) -> asyncio.Lock:
        """Lock held by the orchestrator for the duration of a run."""
        return self._run_lock

    # --- document ---

    def set_document(self, payload: bytes, timestamp: datetime) -> None:
        self._document = DocumentArtifact(payload=payload, generated_at=timestamp)

    def get_document(self) -> DocumentArtifact | None:
        return self._document

    def has_document(self) -> bool:
        return self._document is not None

    def clear_document(self) -> None:
        self._document = None

    # --- structured text ---

    def set_structured_text(self, payload: str, timestamp: datetime) -> None:
        self._structured_text = StructuredTextArtifact(payload=payload, generated_at=timestamp)

    def get_structured_text(self) -> StructuredTextArtifact | None:
        return self._structured_text

    def has_structured_text(self) -> bool:
        return self._structured_text is not None

    def clear_structured_text(self) -> None:
        self._structured_text = None

    # --- all ---

    def has(self, kind: ArtifactKind) -> bool:
        """Check a slot by kind."""
        if kind is ArtifactKind.DOCUMENT:
            return self.has_document()
        return self.has_structured_text()

    def clear(self, kind: ArtifactKind) -> None:
        """Clear a slot by kind."""
        if kind is ArtifactKind.DOCUMENT:
            self.clear_document()
        else:
            self.clear_structured_text()

    def clear_all(self) -> None:
        """Release both held payloads."""
        for kind in ArtifactKind:
            self.clear(kind)
