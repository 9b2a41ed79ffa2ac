"""Short-TTL cache of the runtime configuration snapshot."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from hookbridge.core.config import RuntimeConfig
from hookbridge.core.errors import ConfigLoadError, DatastoreError
from hookbridge.core.ports import SettingsSource

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 4.0


class ConfigCache:
    """Serve a RuntimeConfig snapshot, reloading it once the TTL has elapsed.

    The snapshot is replaced, never mutated. Once the TTL is over a failed
    refresh raises instead of serving the old snapshot, so staleness stays
    bounded by the TTL.
    """

    def __init__(
        self,
        source: SettingsSource,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[RuntimeConfig] = None
        self._loaded_at = 0.0

    def _is_fresh(self, now: float) -> bool:
        return self._snapshot is not None and now - self._loaded_at < self._ttl

    async def get(self) -> RuntimeConfig:
        now = self._clock()
        if self._is_fresh(now):
            return self._snapshot  # type: ignore[return-value]

        try:
            snapshot = await self._source.load_runtime_config()
        except ConfigLoadError:
            raise
        except DatastoreError as exc:
            raise ConfigLoadError(str(exc)) from exc

        self._snapshot = snapshot
        self._loaded_at = now
        LOGGER.debug(
            "Runtime config refreshed (%s contacts, %s groups)",
            len(snapshot.contacts),
            len(snapshot.groups),
        )
        return snapshot
