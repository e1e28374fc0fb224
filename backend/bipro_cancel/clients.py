"""
Request/response adapters for the three downstream cancellation services.

Provides a protocol per service and concrete httpx-based implementations:

- document generation: customer + policy JSON -> cancellation PDF bytes
- XML mapping: PDF + customer + policy (multipart) -> BiPRO XML text
- confirmation: BiPRO XML -> acknowledgment text

Adapters only build requests and coerce responses to the expected shape.
They do not retry, cache, or interpret payload contents. Every failure is
raised as a TransportError or ShapeError tagged with the adapter's stage.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from bipro_cancel.config import ServiceSettings
from bipro_cancel.errors import ShapeError, TransportError
from bipro_cancel.models import Customer, Policy, Stage


DOCUMENT_PATH = "/cancellation/preview"
MAPPING_PATH = "/pdf-xml"
CONFIRMATION_PATH = "/cancellation-confirm"

# Content types that never carry an opaque document
_TEXTUAL_TYPES = ("text/", "application/json", "application/xml")
_TEXTUAL_SUFFIXES = ("+json", "+xml")

# Content types that never carry text
_BINARY_TYPES = ("application/pdf", "application/octet-stream", "image/")


class DocumentClient(Protocol):
    """Protocol for the document-generation service."""

    async def generate_document(self, customer: Customer, policy: Policy) -> bytes:
        """
        Request a cancellation document.

        Raises:
            TransportError: If the call fails or returns a non-success status.
            ShapeError: If the response is not a binary document.
        """
        ...


class MappingClient(Protocol):
    """Protocol for the PDF-to-BiPRO-XML mapping service."""

    async def map_to_xml(
        self,
        customer: Customer,
        policy: Policy,
        document: bytes,
    ) -> str:
        ...


class ConfirmationClient(Protocol):
    """Protocol for the confirmation receiver."""

    async def submit_for_confirmation(self, structured_text: str) -> str:
        ...


# --- Request construction ---


def build_document_request(customer: Customer, policy: Policy) -> dict[str, Any]:
    """
    Build the JSON body for the document-generation service.

    Name and address are concatenated into single lines; the insurer name
    is sent as the company address.
    """
    return {
        "customer": {
            "name": customer.full_name,
            "address": customer.address,
        },
        "policy": {
            "policyNumber": policy.policy_number,
            "productName": policy.product_name,
            "endDate": policy.end_date,
            "companyAddress": policy.insurance_company,
        },
    }


def mapping_filename(policy: Policy) -> str:
    """
    Filename of the PDF part sent to the mapping service.

    Format: cancellation_<policyNumber>.pdf, with 'cancellation' standing in
    for a blank policy number. Path separators are replaced.
    """
    number = policy.policy_number.strip() or "cancellation"
    number = number.replace("\\", "_").replace("/", "_")
    return f"cancellation_{number}.pdf"


def build_mapping_files(
    customer: Customer,
    policy: Policy,
    document: bytes,
) -> dict[str, tuple[str, bytes, str]]:
    """Build the multipart parts (pdf, customer, policy) for the mapping service."""
    return {
        "pdf": (mapping_filename(policy), document, "application/pdf"),
        "customer": (
            "customer.json",
            json.dumps(customer.to_wire(), ensure_ascii=False).encode("utf-8"),
            "application/json",
        ),
        "policy": (
            "policy.json",
            json.dumps(policy.to_wire(), ensure_ascii=False).encode("utf-8"),
            "application/json",
        ),
    }


# --- Response coercion ---


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";")[0].strip().lower()


def _is_textual(media_type: str) -> bool:
    return media_type.startswith(_TEXTUAL_TYPES) or media_type.endswith(_TEXTUAL_SUFFIXES)


def _check_status(stage: Stage, response: httpx.Response) -> None:
    if not response.is_success:
        raise TransportError(
            stage,
            f"{response.request.method} {response.request.url} returned HTTP {response.status_code}",
            status_code=response.status_code,
        )


def expect_binary(stage: Stage, response: httpx.Response) -> bytes:
    """
    Coerce a response to an opaque binary payload.

    Raises:
        TransportError: On a non-success status.
        ShapeError: On an empty body or a textual content type.
    """
    _check_status(stage, response)
    media_type = _media_type(response)
    if _is_textual(media_type):
        raise ShapeError(stage, f"expected a binary document, got {media_type}")
    body = response.content
    if not body:
        raise ShapeError(stage, "expected a binary document, got an empty body")
    return body


def expect_text(stage: Stage, response: httpx.Response, *, allow_blank: bool = True) -> str:
    """
    Coerce a response to text.

    Raises:
        TransportError: On a non-success status.
        ShapeError: On a binary content type, undecodable body, or (unless
            allow_blank) a blank body.
    """
    _check_status(stage, response)
    media_type = _media_type(response)
    if media_type.startswith(_BINARY_TYPES):
        raise ShapeError(stage, f"expected text, got {media_type}")
    encoding = response.charset_encoding or "utf-8"
    try:
        text = response.content.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise ShapeError(stage, f"response is not valid {encoding} text: {e}")
    if not allow_blank and not text.strip():
        raise ShapeError(stage, "expected text, got an empty body")
    return text


async def _post(
    stage: Stage,
    client: httpx.AsyncClient,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    try:
        return await client.post(url, **kwargs)
    except httpx.HTTPError as e:
        raise TransportError(stage, f"POST {url} failed: {e.__class__.__name__}: {e}") from e


# --- Concrete adapters ---


class HttpDocumentClient:
    """Document-generation adapter: POST /cancellation/preview."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + DOCUMENT_PATH

    async def generate_document(self, customer: Customer, policy: Policy) -> bytes:
        response = await _post(
            Stage.DOCUMENT_GENERATION,
            self._client,
            self._url,
            json=build_document_request(customer, policy),
        )
        return expect_binary(Stage.DOCUMENT_GENERATION, response)


class HttpMappingClient:
    """XML-mapping adapter: POST /pdf-xml (multipart)."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + MAPPING_PATH

    async def map_to_xml(
        self,
        customer: Customer,
        policy: Policy,
        document: bytes,
    ) -> str:
        response = await _post(
            Stage.MAPPING,
            self._client,
            self._url,
            files=build_mapping_files(customer, policy, document),
        )
        return expect_text(Stage.MAPPING, response, allow_blank=False)


class HttpConfirmationClient:
    """Confirmation adapter: POST /cancellation-confirm with the raw XML body."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + CONFIRMATION_PATH

    async def submit_for_confirmation(self, structured_text: str) -> str:
        response = await _post(
            Stage.CONFIRMATION,
            self._client,
            self._url,
            content=structured_text.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )
        return expect_text(Stage.CONFIRMATION, response)


@dataclass
class DownstreamClients:
    """The three stage adapters used by one pipeline."""

    document: DocumentClient
    mapping: MappingClient
    confirmation: ConfirmationClient

    @classmethod
    def over_http(
        cls,
        client: httpx.AsyncClient,
        settings: ServiceSettings,
    ) -> DownstreamClients:
        """Wire the httpx adapters to the configured service URLs."""
        return cls(
            document=HttpDocumentClient(client, settings.document_service_url),
            mapping=HttpMappingClient(client, settings.mapping_service_url),
            confirmation=HttpConfirmationClient(client, settings.confirmation_service_url),
        )


def create_http_client(settings: ServiceSettings) -> httpx.AsyncClient:
    """
    Create the shared httpx client.

    The configured timeout is the only bound on how long a stage may take.
    The caller owns the client and must close it (``async with`` or ``aclose``).
    """
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.timeout_seconds))
