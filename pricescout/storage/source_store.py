"""Source configuration stores."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import yaml
from pydantic import ValidationError

from pricescout.errors import SourceStoreError
from pricescout.models.config import SourceProfile

logger = logging.getLogger(__name__)


class SourceStore(Protocol):
    """Read-only access to source profiles."""

    async def list_active_sources(self) -> List[SourceProfile]:
        ...

    async def find_source(self, source_id: str) -> Optional[SourceProfile]:
        ...


class InMemorySourceStore:
    """Store holding already-loaded profiles."""

    def __init__(self, profiles: Iterable[SourceProfile] = ()):
        self._profiles: Dict[str, SourceProfile] = {p.id: p for p in profiles}

    async def list_active_sources(self) -> List[SourceProfile]:
        return [p for p in self._profiles.values() if p.is_active]

    async def find_source(self, source_id: str) -> Optional[SourceProfile]:
        return self._profiles.get(source_id)


class YamlSourceStore:
    """
    Store reading profiles from a YAML file.

    Expected layout::

        sources:
          - id: shop-a
            name: Shop A
            category: popular
            isActive: true
            configuration:
              baseUrl: https://shop-a.example
              searchUrlTemplate: https://shop-a.example/search?q={query}
              selectors:
                productContainer: .product
                productName: .product-name
                productPrice: .product-price
              rateLimitMs: 1000

    Parsed profiles are cached by the file's modification time and size,
    so edits apply without a restart. Reads happen off the event loop.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._signature: Optional[Tuple[int, int]] = None
        self._profiles: List[SourceProfile] = []

    def _current(self) -> List[SourceProfile]:
        try:
            stat = self.path.stat()
        except OSError as e:
            raise SourceStoreError(f"Cannot read source store {self.path}: {e}") from e

        signature = (stat.st_mtime_ns, stat.st_size)
        if signature != self._signature:
            self._profiles = self._load()
            self._signature = signature
        return self._profiles

    def _load(self) -> List[SourceProfile]:
        try:
            with open(self.path, 'r') as f:
                document = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SourceStoreError(f"Cannot read source store {self.path}: {e}") from e

        records = document.get('sources', []) if isinstance(document, dict) else []
        profiles = []
        for record in records:
            try:
                profile = SourceProfile.from_record(record)
            except ValidationError as e:
                logger.warning(f"Skipping source record without valid identity: {e}")
                continue
            if profile.configuration_error:
                logger.warning(f"Source {profile.id} misconfigured: {profile.configuration_error}")
            profiles.append(profile)
        return profiles

    async def list_active_sources(self) -> List[SourceProfile]:
        profiles = await asyncio.to_thread(self._current)
        return [p for p in profiles if p.is_active]

    async def find_source(self, source_id: str) -> Optional[SourceProfile]:
        for profile in await asyncio.to_thread(self._current):
            if profile.id == source_id:
                return profile
        return None
