"""
Request signing for authenticated REST calls.

The signature is an HMAC-SHA256 (hex) over the canonical query string:
every parameter plus ``recvWindow`` and ``timestamp``, ``None`` values
dropped, keys sorted lexicographically, ``k=v`` pairs URL-encoded and joined
with ``&``. The same string is sent on the wire with ``signature`` appended,
so what the exchange verifies is byte-for-byte what was signed.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

from .exceptions import MissingCredentialsError
from .models import RequestDescriptor, SignedRequest

API_KEY_HEADER = "X-MBX-APIKEY"

_PLACEHOLDERS = {
    "your_api_key_here",
    "your_secret_key_here",
    "PLACEHOLDER",
    "placeholder",
    "",
}


def validate_credentials(credential_name: str, credential_value: Optional[str]) -> None:
    """
    Reject missing or placeholder credentials.

    Raises:
        MissingCredentialsError: If the credential is missing or a placeholder
    """
    if not credential_value:
        raise MissingCredentialsError(f"Missing {credential_name}")
    if credential_value in _PLACEHOLDERS:
        raise MissingCredentialsError(f"{credential_name} is not configured (placeholder or empty)")


@dataclass(frozen=True)
class Credentials:
    """API key and secret. The secret never shows up in ``repr``."""

    api_key: str
    api_secret: bytes = field(repr=False)

    def __post_init__(self) -> None:
        validate_credentials("api_key", self.api_key)
        validate_credentials("api_secret", self.api_secret.decode("utf-8") if self.api_secret else "")

    @classmethod
    def from_strings(cls, api_key: str, api_secret: str) -> "Credentials":
        return cls(api_key=api_key, api_secret=(api_secret or "").encode("utf-8"))

    @classmethod
    def from_env(
        cls,
        key_var: str = "BINANCE_API_KEY",
        secret_var: str = "BINANCE_API_SECRET",
    ) -> "Credentials":
        api_key = os.getenv(key_var)
        api_secret = os.getenv(secret_var)
        validate_credentials(key_var, api_key)
        validate_credentials(secret_var, api_secret)
        return cls.from_strings(api_key, api_secret)

    @property
    def masked_key(self) -> str:
        if len(self.api_key) <= 8:
            return "***"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"

    def __repr__(self) -> str:
        return f"Credentials(api_key={self.masked_key!r})"


def format_param_value(value: Any) -> str:
    """Render a parameter value the way the exchange expects to read it back."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, float):
        return format(Decimal(repr(value)).normalize(), "f")
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(f'"{format_param_value(item)}"' for item in value) + "]"
    return str(value)


def canonical_params(params: Iterable[Tuple[str, Any]]) -> List[Tuple[str, str]]:
    """Drop ``None`` values, render the rest and sort by key."""
    rendered = [(key, format_param_value(value)) for key, value in params if value is not None]
    return sorted(rendered, key=lambda item: item[0])


def canonical_query(params: Iterable[Tuple[str, Any]]) -> str:
    return urlencode(canonical_params(params))


class RequestSigner:
    """
    Signing provider owning one set of credentials.

    Pure given its inputs: the same descriptor and timestamp always produce
    the same signature. Pass the instance explicitly to whatever needs to sign.
    """

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    @property
    def api_key(self) -> str:
        return self._credentials.api_key

    def api_key_header(self) -> Dict[str, str]:
        return {API_KEY_HEADER: self._credentials.api_key}

    def _signing_params(
        self, descriptor: RequestDescriptor, timestamp: int, recv_window: Optional[int]
    ) -> List[Tuple[str, Any]]:
        params = [(k, v) for k, v in descriptor.params if k not in {"timestamp", "signature"}]
        keys = {k for k, _ in params}
        if recv_window is not None and "recvWindow" not in keys:
            params.append(("recvWindow", recv_window))
        params.append(("timestamp", timestamp))
        return params

    def _digest(self, payload: str) -> str:
        return hmac.new(self._credentials.api_secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, descriptor: RequestDescriptor, timestamp: int, recv_window: Optional[int] = None) -> str:
        """Return the hex HMAC-SHA256 signature for ``descriptor`` at ``timestamp`` (ms)."""
        return self._digest(canonical_query(self._signing_params(descriptor, timestamp, recv_window)))

    def sign_request(
        self,
        descriptor: RequestDescriptor,
        timestamp: int,
        recv_window: int,
    ) -> SignedRequest:
        """Bind ``descriptor`` to ``timestamp`` and produce the wire query string."""
        query = canonical_query(self._signing_params(descriptor, timestamp, recv_window))
        signature = self._digest(query)
        return SignedRequest(
            descriptor=descriptor,
            timestamp=timestamp,
            recv_window=recv_window,
            signature=signature,
            query=f"{query}&signature={signature}",
        )

    def __repr__(self) -> str:
        return f"RequestSigner({self._credentials!r})"


__all__ = [
    "API_KEY_HEADER",
    "Credentials",
    "RequestSigner",
    "canonical_params",
    "canonical_query",
    "format_param_value",
    "validate_credentials",
]
