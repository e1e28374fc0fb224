"""
Pydantic models for the BiPRO cancellation pipeline.

These models define the records handed over by the data-entry UI
(customer and current policy), the cached artifacts produced by the
pipeline stages, and the bookkeeping types of a single pipeline run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Stage(str, Enum):
    """The three ordered stages of a cancellation run."""

    DOCUMENT_GENERATION = "document generation"
    MAPPING = "mapping"
    CONFIRMATION = "confirmation"

    @property
    def step_name(self) -> str:
        """Trace step name, e.g. 'stage:document_generation'."""
        return "stage:" + self.value.replace(" ", "_")


class ArtifactKind(str, Enum):
    """Kinds of artifacts cached by the ArtifactStore."""

    DOCUMENT = "document"
    STRUCTURED_TEXT = "structured_text"


class RunState(str, Enum):
    """States of a single pipeline run."""

    IDLE = "idle"
    GENERATING_DOCUMENT = "generating_document"
    DOCUMENT_READY = "document_ready"
    MAPPING_TO_STRUCTURED_TEXT = "mapping_to_structured_text"
    STRUCTURED_TEXT_READY = "structured_text_ready"
    SUBMITTING_CONFIRMATION = "submitting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"


class _Record(BaseModel):
    """
    Base for the plain-text records entered in the UI.

    Fields are snake_case in Python and camelCase on the wire. Drafts may
    hold empty strings; a record is only usable for a run once complete.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    LABELS: ClassVar[dict[str, str]] = {}

    @classmethod
    def label_for(cls, field: str) -> str:
        """Display label for a field, falling back to the field name."""
        return cls.LABELS.get(field, field)

    def missing_fields(self) -> list[str]:
        """Names of fields that are blank after trimming, in declaration order."""
        return [
            name
            for name in type(self).model_fields
            if not (getattr(self, name) or "").strip()
        ]

    @property
    def is_complete(self) -> bool:
        """A record is complete iff every field is non-blank after trimming."""
        return not self.missing_fields()

    def trimmed(self):
        """Return a copy with surrounding whitespace removed from every field."""
        return self.model_copy(
            update={
                name: (getattr(self, name) or "").strip()
                for name in type(self).model_fields
            }
        )

    def to_wire(self) -> dict[str, str]:
        """Serialize with camelCase keys, as expected by the downstream services."""
        return self.model_dump(by_alias=True)


class Customer(_Record):
    """A customer with name and postal address."""

    LABELS: ClassVar[dict[str, str]] = {
        "first_name": "Vorname",
        "last_name": "Nachname",
        "street": "Straße",
        "house_number": "Hausnummer",
        "postal_code": "PLZ",
        "city": "Ort",
    }

    first_name: str = ""
    last_name: str = ""
    street: str = ""
    house_number: str = ""
    postal_code: str = ""
    city: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def address(self) -> str:
        """Single-line postal address: '<street> <no>, <postal code> <city>'."""
        return f"{self.street} {self.house_number}, {self.postal_code} {self.city}".strip()


class Policy(_Record):
    """The current insurance policy that is to be cancelled."""

    LABELS: ClassVar[dict[str, str]] = {
        "policy_number": "Policennummer",
        "product_name": "Produktname",
        "start_date": "Versicherungsbeginn",
        "end_date": "Ablaufdatum",
        "insurance_company": "Versicherungsgesellschaft",
    }

    policy_number: str = ""
    product_name: str = ""
    start_date: str = ""
    end_date: str = ""
    insurance_company: str = ""


class DocumentArtifact(BaseModel):
    """The generated cancellation document (PDF bytes) and its generation time."""

    model_config = ConfigDict(frozen=True)

    payload: bytes
    generated_at: datetime


class StructuredTextArtifact(BaseModel):
    """The BiPRO XML mapped from the cancellation document."""

    model_config = ConfigDict(frozen=True)

    payload: str
    generated_at: datetime


class RunOutcome(BaseModel):
    """Result of a successful cancellation run."""

    run_id: str
    acknowledgment: str
    document: DocumentArtifact
    structured_text: StructuredTextArtifact
    states: list[RunState] = Field(default_factory=list)
