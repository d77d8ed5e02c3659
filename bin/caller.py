"""DK-API outbound caller: one GET or POST with a timeout, never raises.

A timeout, connection error, HTTP error status or undecodable body comes
back as a ProviderUnavailable Result.  No retries.
"""

from __future__ import annotations

import re
from typing import Any, Dict

import requests

import config as config_mod
from outcome import ErrorKind, Result


DEFAULT_TIMEOUT_S = 30.0

_RE_KEY_PARAM = re.compile(r"([?&]key=)[^&]+")


def mask_url(url: str) -> str:
    """Hide the credential and the (possibly long) prompt when printing URLs."""
    masked = _RE_KEY_PARAM.sub(r"\1***", url)
    return masked if len(masked) <= 160 else masked[:160] + "..."


class OutboundCaller:
    """Thin wrapper over a requests.Session."""

    def __init__(self, timeout_s: float = DEFAULT_TIMEOUT_S, http: requests.Session | None = None):
        self.timeout_s = timeout_s
        self.http = http or requests.Session()

    def get(self, url: str) -> Result[Any]:
        return self._send("GET", url, None)

    def post(self, url: str, payload: Dict[str, Any]) -> Result[Any]:
        return self._send("POST", url, payload)

    def _send(self, method: str, url: str, payload: Dict[str, Any] | None) -> Result[Any]:
        if config_mod.DEBUG_MODE:
            print(f"[DEBUG] {method} → {mask_url(url)}")
        try:
            if payload is None:
                resp = self.http.get(url, timeout=self.timeout_s)
            else:
                resp = self.http.post(url, json=payload, headers={"Content-Type": "application/json"},
                                      timeout=self.timeout_s)
        except requests.Timeout:
            return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE, detail=f"timeout after {self.timeout_s}s")
        except requests.RequestException as exc:
            return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE, detail=f"{type(exc).__name__}: {exc}")

        if resp.status_code >= 400:
            return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE,
                                  detail=f"HTTP {resp.status_code}: {resp.text[:300]}")
        try:
            body = resp.json()
        except ValueError:
            return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE,
                                  detail=f"non-JSON body: {resp.text[:300]}")
        if config_mod.DEBUG_MODE:
            print(f"[DEBUG] ← {method} {resp.status_code} ({len(resp.content)} bytes)")
        return Result.success(body)
