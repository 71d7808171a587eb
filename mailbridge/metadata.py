"""Metadata filters — decide which key/value pairs cross the mail boundary.

Used by producers (metadata → outbound mail headers) and by
:class:`~mailbridge.mime.MetadataMailHeaders` (inbound mail headers →
metadata).
"""

from __future__ import annotations

import abc
import re
from collections.abc import Iterable, Mapping


class MetadataFilter(abc.ABC):
    """Return the subset of *metadata* that should be kept."""

    @abc.abstractmethod
    def filter(self, metadata: Mapping[str, str]) -> dict[str, str]: ...


class RemoveAllMetadataFilter(MetadataFilter):
    """Keep nothing (the producer default)."""

    def filter(self, metadata: Mapping[str, str]) -> dict[str, str]:
        return {}


class NoOpMetadataFilter(MetadataFilter):
    """Keep everything."""

    def filter(self, metadata: Mapping[str, str]) -> dict[str, str]:
        return dict(metadata)


class RegexMetadataFilter(MetadataFilter):
    """Keep keys matching any include pattern and no exclude pattern.

    With no include patterns every key not excluded is kept.
    """

    def __init__(
        self,
        include_patterns: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
    ) -> None:
        self._include = [re.compile(p) for p in include_patterns]
        self._exclude = [re.compile(p) for p in exclude_patterns]

    def filter(self, metadata: Mapping[str, str]) -> dict[str, str]:
        return {k: v for k, v in metadata.items() if self._keep(k)}

    def _keep(self, key: str) -> bool:
        if any(p.fullmatch(key) for p in self._exclude):
            return False
        if not self._include:
            return True
        return any(p.fullmatch(key) for p in self._include)
