"""Parsing of the comma-separated Alertmanager address."""

import logging

from pydantic import AnyUrl, TypeAdapter, ValidationError

from fluxalert.errors import InvalidEndpointsError

logger = logging.getLogger(__name__)

_url_adapter = TypeAdapter(AnyUrl)


def _validate(token: str) -> str | None:
    """Return a reason string if token is not an absolute URL, else None."""
    if not token:
        return "empty URL"
    try:
        url = _url_adapter.validate_python(token)
    except ValidationError as e:
        return "; ".join(err["msg"] for err in e.errors())
    if not url.host:
        return "URL has no host"
    return None


def parse_endpoints(address: str) -> tuple[str, ...]:
    """Split address on commas and validate every URL.

    All invalid tokens are collected and reported together in a single
    InvalidEndpointsError.
    """
    endpoints: list[str] = []
    invalid: list[tuple[str, str]] = []

    for raw in address.split(","):
        token = raw.strip()
        reason = _validate(token)
        if reason:
            invalid.append((token, reason))
        else:
            endpoints.append(token)

    if invalid:
        raise InvalidEndpointsError(invalid)

    logger.debug(f"Parsed {len(endpoints)} alertmanager endpoint(s)")
    return tuple(endpoints)
