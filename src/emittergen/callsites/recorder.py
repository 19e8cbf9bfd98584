# src/emittergen/callsites/recorder.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from ..types import CallSiteDetails, MetricManifestEntry, MetricType
from .errors import DuplicateEventError, SourceLocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallSite:
    """Event metadata attributed to the place where a handle is invoked."""
    event_name: str
    filename: str
    line_no: int
    func_name: str
    package: str
    property_keys: Tuple[str, ...] = ()
    metric_type: str = ""

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(self.filename, self.line_no)

    def to_details(self) -> CallSiteDetails:
        return CallSiteDetails(
            filename=self.filename,
            line_no=self.line_no,
            func_name=self.func_name,
            package=self.package,
            property_keys=self.property_keys,
            metric_type=self.metric_type,
        )

    def to_manifest_entry(self) -> MetricManifestEntry:
        return MetricManifestEntry(
            name=self.event_name,
            metric_type=MetricType.__members__.get(self.metric_type),
            type_string=self.metric_type,
            property_keys=self.property_keys,
        )


def sort_key(site: CallSite) -> Tuple[str, int, str]:
    return (site.filename, site.line_no, site.event_name)


class CallsiteRecorder:
    """
    Owns the event name -> CallSite mapping.

    The first write for an event wins. A decorator write replaces whatever is
    recorded; any other second write is a duplicate and raises.
    """

    def __init__(self) -> None:
        self._sites: Dict[str, CallSite] = {}

    def record(self, site: CallSite, *, decorator: bool = False) -> None:
        existing = self._sites.get(site.event_name)
        if existing is not None and not decorator:
            raise DuplicateEventError(site.event_name, existing.location, site.location)
        if existing is not None:
            logger.debug("decorator at %s overrides %s for %r", site.location, existing.location, site.event_name)
        self._sites[site.event_name] = site

    def __len__(self) -> int:
        return len(self._sites)

    def __contains__(self, event_name: str) -> bool:
        return event_name in self._sites

    def callsites(self) -> List[CallSite]:
        return sorted(self._sites.values(), key=sort_key)

    def as_dict(self) -> Dict[str, CallSite]:
        return {site.event_name: site for site in self.callsites()}
