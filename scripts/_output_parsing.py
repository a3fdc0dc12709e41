"""Parsers for free-text CLI output and embedded tokens.

External CLIs do not offer structured output for everything the pipeline
needs, so the coupling to their human-readable format is kept here. Each
parser returns an explicit "no match" value (``None`` or an empty list)
instead of raising, so stage logic can branch on it.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Iterable
from urllib.parse import unquote

from scripts._provisioning_models import RelayTokenBundle, Team

SLUG_MAX_LENGTH = 40

_TEAM_LINE = re.compile(r"^\s+-\s+(.+?)\s+\(([^)]+)\)\s*$", re.MULTILINE)
_HTTPS_URL = re.compile(r"(https://\S+)")
_VERSION = re.compile(r"(\d+\.\d+\.\d+)")
_RELAY_KEY = re.compile(r"key=([^&#]+)")


def parse_team_list(output: str) -> list[Team]:
    """Parse ``- name (slug)`` lines from backend login status output.

    Examples
    --------
    >>> parse_team_list("Logged in\\nTeams:\\n  - Acme Inc (acme)\\n  - Solo (solo-42)\\n")
    [Team(name='Acme Inc', slug='acme'), Team(name='Solo', slug='solo-42')]
    >>> parse_team_list("Logged in")
    []
    """
    return [Team(name=name, slug=slug) for name, slug in _TEAM_LINE.findall(output)]


def slugify_project_name(name: str) -> str:
    """Derive a URL-safe project slug from a human project name.

    Examples
    --------
    >>> slugify_project_name("  My Cool App!! ")
    'my-cool-app'
    >>> len(slugify_project_name("x" * 60))
    40
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")[:SLUG_MAX_LENGTH]


def extract_deployment_url(lines: Iterable[str]) -> str | None:
    """Return the first ``https://`` URL found in ``lines``.

    Examples
    --------
    >>> extract_deployment_url(["Building...", "Production: https://app.vercel.app [2s]"])
    'https://app.vercel.app'
    >>> extract_deployment_url(["no url here"]) is None
    True
    """
    for line in lines:
        if "https://" not in line:
            continue
        match = _HTTPS_URL.search(line)
        if match:
            return match.group(1)
    return None


def extract_version(output: str | None) -> str | None:
    """Pull a ``major.minor.patch`` version out of ``--version`` output.

    Falls back to the stripped output when no version number is present.

    Examples
    --------
    >>> extract_version("git version 2.43.0")
    '2.43.0'
    >>> extract_version(None) is None
    True
    """
    if output is None or not output.strip():
        return None
    match = _VERSION.search(output)
    return match.group(1) if match else output.strip()


def decode_base64_text(encoded: str) -> str | None:
    """Decode standard or URL-safe base64 with optional padding.

    Examples
    --------
    >>> decode_base64_text("aGVsbG8")
    'hello'
    >>> decode_base64_text("***") is None
    True
    """
    cleaned = encoded.strip()
    if not cleaned:
        return None
    padded = cleaned + "=" * (-len(cleaned) % 4)
    try:
        if "-" in padded or "_" in padded:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None


def parse_relay_auth_url(relay_url: str) -> RelayTokenBundle | None:
    """Decode the one-time token bundle from a relay dashboard URL.

    The ``key`` query parameter carries base64-encoded JSON with ``appId``,
    ``oneTimeToken`` and ``region``.

    Examples
    --------
    >>> token = base64.b64encode(b'{"appId": "app_1", "oneTimeToken": "ott", "region": "eu"}')
    >>> parse_relay_auth_url("https://app.svix.com/login#key=" + token.decode())
    RelayTokenBundle(app_id='app_1', region='eu')
    """
    match = _RELAY_KEY.search(relay_url)
    if not match:
        return None
    decoded = decode_base64_text(unquote(match.group(1)))
    if decoded is None:
        return None
    try:
        payload = json.loads(decoded)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    app_id = payload.get("appId")
    one_time_token = payload.get("oneTimeToken")
    if not isinstance(app_id, str) or not isinstance(one_time_token, str):
        return None
    region = payload.get("region")
    return RelayTokenBundle(
        app_id=app_id,
        one_time_token=one_time_token,
        region=region if isinstance(region, str) else None,
    )


__all__ = [
    "SLUG_MAX_LENGTH",
    "decode_base64_text",
    "extract_deployment_url",
    "extract_version",
    "parse_relay_auth_url",
    "parse_team_list",
    "slugify_project_name",
]
