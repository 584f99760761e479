"""
Batch requests and their fingerprints.

A request is a URI plus a multimap of parameters. Its key is derived from
both so that identical requests, whatever order their parameters arrived in,
share one queue entry and one cached result. Keys double as storage object
names, so they are bounded in length and never contain ``/``.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping, Sequence
from typing import Optional
from urllib.parse import quote, unquote

from batch.exceptions import InvalidRequestKeyError

MAX_KEY_LENGTH = 200
DEFAULT_ESTIMATED_DURATION_MS = 60000

# Ordered multimap: values keep insertion order, key order carries no meaning.
# A None value is a parameter given without a value.
Parameters = dict[str, list[Optional[str]]]


def _sorted_values(values: Iterable[str | None]) -> list[str]:
    return sorted(value or "" for value in values)


def compute_key(request_uri: str, parameters: Mapping[str, Sequence[str | None]]) -> str:
    """
    Derive the canonical key for a request.

    Parameter names are sorted and so are the values of each name. When the
    readable ``uri_name_value`` form fits in ``MAX_KEY_LENGTH`` it is used
    directly with ``/`` escaped; otherwise the key is the hex MD5 of the same
    canonical ordering.
    """
    names = sorted(parameters)

    parts = [request_uri]
    for name in names:
        parts.append(name)
        parts.extend(_sorted_values(parameters[name]))
    key = "_".join(parts).replace("/", "%2F")
    if len(key) <= MAX_KEY_LENGTH:
        return key

    digest = hashlib.md5(request_uri.encode("utf-8"))
    for name in names:
        for value in _sorted_values(parameters[name]):
            digest.update(f"{name}={value}".encode("utf-8"))
    return digest.hexdigest()


def validate_key(key: str) -> str:
    if not key or len(key) > MAX_KEY_LENGTH or "/" in key:
        raise InvalidRequestKeyError(
            message=f"Illegal request key: {key}",
            details=f"Keys must be 1 to {MAX_KEY_LENGTH} characters and must not contain '/'",
            context={"key_length": len(key)},
        )
    return key


def encode_parameters(parameters: Mapping[str, Sequence[str | None]]) -> str:
    """Render parameters as a ``name=value&...`` string; a valueless parameter is a bare name."""
    bindings = []
    for name, values in parameters.items():
        for value in values:
            if value is None:
                bindings.append(quote(name, safe=""))
            else:
                bindings.append(f"{quote(name, safe='')}={quote(value, safe='')}")
    return "&".join(bindings)


def decode_parameters(encoded: str | None) -> Parameters:
    """Inverse of :func:`encode_parameters`."""
    parameters: Parameters = {}
    if not encoded:
        return parameters
    for binding in encoded.split("&"):
        name, sep, value = binding.partition("=")
        parameters.setdefault(unquote(name), []).append(unquote(value) if sep else None)
    return parameters


def parameters_from_pairs(pairs: Iterable[tuple[str, str | None]]) -> Parameters:
    parameters: Parameters = {}
    for name, value in pairs:
        parameters.setdefault(name, []).append(value)
    return parameters


class BatchRequest:
    """
    A request to be queued as a batch job.

    The ``sticky`` flag asks for the result to be kept in the persistent part
    of the cache, outside whatever retention policy applies to ordinary results.
    """

    def __init__(
        self,
        request_uri: str,
        parameters: Mapping[str, Sequence[str | None]] | str | None = None,
        *,
        sticky: bool = False,
        estimated_duration: int | None = DEFAULT_ESTIMATED_DURATION_MS,
        key: str | None = None,
    ) -> None:
        self.request_uri = request_uri
        if isinstance(parameters, str):
            self.parameters = decode_parameters(parameters)
        else:
            self.parameters = {name: list(values) for name, values in (parameters or {}).items()}
        self.sticky = sticky
        self.estimated_duration = estimated_duration
        self._key: str | None = None
        if key is not None:
            self.assign_key(key)

    @property
    def key(self) -> str:
        """The request key, computed from URI and parameters unless one was assigned."""
        if self._key is None:
            self._key = compute_key(self.request_uri, self.parameters)
        return self._key

    def assign_key(self, key: str) -> None:
        """
        Use an explicit, readable key instead of the computed fingerprint.

        Raises:
            InvalidRequestKeyError: the key is too long, contains ``/``, or a
                different key has already been fixed for this request.
        """
        validate_key(key)
        if self._key is not None and self._key != key:
            raise InvalidRequestKeyError(
                message=f"Request key already fixed as {self._key}",
                context={"requested_key": key},
            )
        self._key = key

    @property
    def parameter_string(self) -> str:
        return encode_parameters(self.parameters)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BatchRequest):
            return NotImplemented
        return (
            self.request_uri == other.request_uri
            and self.parameters == other.parameters
            and self.key == other.key
            and self.sticky == other.sticky
            and self.estimated_duration == other.estimated_duration
        )

    def __repr__(self) -> str:
        return f"BatchRequest(request_uri={self.request_uri!r}, key={self.key!r}, sticky={self.sticky})"
