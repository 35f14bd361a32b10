"""Percent-encoding, query-string parsing, and authorization URL construction.

The encoder is strict: only ``[A-Za-z0-9]`` pass through and
every other byte of the UTF-8 form becomes upper-hex ``%XX`` (space is
``%20``, never ``+``). The decoder accepts any input: well-formed ``%XX``
triples are decoded, everything else is kept as is, and the resulting bytes
are read as UTF-8.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from oauthloop.models import DEFAULT_SCOPES

_HEXDIGITS = frozenset("0123456789abcdefABCDEF")


def percent_encode(value: str) -> str:
    """Percent-encode *value* for use as a query parameter value."""
    parts: list[str] = []
    for byte in value.encode("utf-8"):
        char = chr(byte)
        if byte < 0x80 and char.isalnum():
            parts.append(char)
        else:
            parts.append(f"%{byte:02X}")
    return "".join(parts)


def percent_decode(value: str) -> str:
    """Decode ``%XX`` triples in *value*; a ``%`` without two hex digits is literal."""
    buffer = bytearray()
    i = 0
    while i < len(value):
        char = value[i]
        hex_pair = value[i + 1:i + 3]
        if char == "%" and len(hex_pair) == 2 and set(hex_pair) <= _HEXDIGITS:
            buffer.append(int(hex_pair, 16))
            i += 3
        else:
            buffer.extend(char.encode("utf-8"))
            i += 1
    return buffer.decode("utf-8", errors="replace")


def build_query_string(params: Mapping[str, str]) -> str:
    """Join *params* as ``key=value`` pairs with percent-encoded values.

    Keys are emitted verbatim and must already be URL-safe.
    """
    return "&".join(f"{key}={percent_encode(value)}" for key, value in params.items())


def parse_query_string(query: str) -> dict[str, str]:
    """Parse a raw query string into a mapping.

    Pairs are split on ``&`` and then on the first ``=`` only. Values are
    percent-decoded, keys are not. A pair without ``=`` maps to an empty
    value, empty segments are skipped, and the last duplicate key wins.
    """
    result: dict[str, str] = {}
    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        result[key] = percent_decode(value)
    return result


def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scopes: Iterable[str] = DEFAULT_SCOPES,
) -> str:
    """Compose the provider consent URL for the authorization code + PKCE grant.

    Args:
        authorization_endpoint: The provider's authorization endpoint. An
            existing query string is extended rather than replaced.
        client_id: The registered client id.
        redirect_uri: The loopback redirect target.
        state: The per-run CSRF token.
        code_challenge: The S256 PKCE challenge.
        scopes: Requested scopes, joined with spaces.

    Returns:
        The full URL to open in the browser.
    """
    params = {
        "response_type": "code",
        "scope": " ".join(scopes),
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{build_query_string(params)}"
