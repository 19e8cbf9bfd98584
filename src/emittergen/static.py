# src/emittergen/static.py
from __future__ import annotations

from typing import Mapping

from .types import CallSiteDetails, CallsiteProvider

_EMPTY = CallSiteDetails()


def new_static_callsite_provider(table: Mapping[str, CallSiteDetails]) -> CallsiteProvider:
    """
    Wrap a generated call-site table in a provider callable.

    Unknown events map to an empty ``CallSiteDetails`` so callers can fall back
    to runtime introspection (``details.is_empty()``).
    """
    snapshot = dict(table)

    def provider(event: str) -> CallSiteDetails:
        return snapshot.get(event, _EMPTY)

    return provider
