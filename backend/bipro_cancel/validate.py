"""
Input validation for cancellation runs.

Loads customer and policy records handed over by the UI (raw JSON or
camelCase dicts) and checks that a (customer, policy) pair is complete
before any downstream call is attempted.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import ValidationError

from bipro_cancel.errors import PreconditionError
from bipro_cancel.models import Customer, Policy, _Record

R = TypeVar("R", bound=_Record)


def load_json_bytes(b: bytes) -> Any:
    """
    Parse JSON from bytes.

    Raises:
        PreconditionError: If the bytes are not valid UTF-8 JSON.
    """
    try:
        return json.loads(b.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise PreconditionError(f"Invalid UTF-8 encoding: {e}")
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Invalid JSON at line {e.lineno}, column {e.colno}: {e.msg}")


def _load_record(model: type[R], data: Any) -> R:
    if isinstance(data, (bytes, bytearray)):
        data = load_json_bytes(bytes(data))
    try:
        return model.model_validate(data)
    except ValidationError as e:
        error_messages = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            error_messages.append(f"{loc}: {err['msg']}")
        raise PreconditionError(
            f"Invalid {model.__name__.lower()} data: {'; '.join(error_messages)}"
        )


def load_customer(data: Any) -> Customer:
    """
    Load a Customer from a dict (camelCase or snake_case keys) or JSON bytes.

    Missing keys become empty strings; completeness is checked separately
    by require_complete.

    Raises:
        PreconditionError: If the data cannot be parsed into a Customer.
    """
    return _load_record(Customer, data)


def load_policy(data: Any) -> Policy:
    """Load a Policy; see load_customer."""
    return _load_record(Policy, data)


def _check_record(record: _Record | None, what: str) -> list[str]:
    if record is None:
        raise PreconditionError(f"{what} is required", missing=[what])
    return [record.label_for(name) for name in record.missing_fields()]


def require_complete(
    customer: Customer | None,
    policy: Policy | None,
) -> tuple[Customer, Policy]:
    """
    Check that both records are present and complete.

    Args:
        customer: The customer to cancel for.
        policy: The policy to cancel.

    Returns:
        Trimmed copies of customer and policy.

    Raises:
        PreconditionError: If either record is None or has blank fields.
            ``missing`` lists the display labels of the blank fields.
    """
    missing = _check_record(customer, "customer") + _check_record(policy, "policy")
    if missing:
        raise PreconditionError(
            f"Incomplete data, missing: {', '.join(missing)}",
            missing=missing,
        )
    return customer.trimmed(), policy.trimmed()
