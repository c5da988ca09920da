# Copyright (C) 2025 LaZone Contributors
#
# This file is part of LaZone Core.
#
# LaZone Core is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Settings Provider.

Serves the listing quota/price settings through a short-TTL in-process cache
and never fails a reader: when the record is missing, unreadable or the store
is down, built-in defaults are served and the degradation is logged.

Administrative updates are a read-modify-write merge committed with a
compare-and-set on the record revision, so a half-applied update is never
visible.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from lazone_core.entitlements.config import EntitlementsConfig
from lazone_core.entitlements.errors import ConfigError, ConfigurationDegraded, PersistenceFailure
from lazone_core.entitlements.stores import SettingsStore
from lazone_core.schema.serialization import deep_merge
from lazone_core.schema.settings import (
    GlobalSettings,
    ListingMode,
    ModeQuotaConfig,
    UserCategory,
    default_settings,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SettingsSnapshot:
    settings: GlobalSettings
    revision: int
    loaded_at: float
    degraded: ConfigurationDegraded | None = None


class SettingsProvider:
    def __init__(
        self,
        store: SettingsStore,
        cfg: EntitlementsConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._cfg = cfg or EntitlementsConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: SettingsSnapshot | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_settings(self) -> GlobalSettings:
        return self.snapshot().settings

    def get_mode_config(self, mode: ListingMode) -> ModeQuotaConfig:
        return self.get_settings().mode_config(ListingMode.parse(mode))

    def snapshot(self) -> SettingsSnapshot:
        now = self._clock()
        with self._lock:
            cached = self._cached
            if cached is not None and now - cached.loaded_at < self._cfg.settings_cache_ttl_s:
                return cached
        loaded = self._load(now)
        with self._lock:
            self._cached = loaded
        return loaded

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def _load(self, now: float) -> SettingsSnapshot:
        try:
            raw, revision = self._store.read_settings()
        except PersistenceFailure as exc:
            return self._degraded(now, f"settings store unavailable: {exc}")
        if raw is None:
            return self._degraded(now, "settings record missing")
        try:
            settings = GlobalSettings.load(raw)
        except (ValidationError, TypeError) as exc:
            return self._degraded(now, f"settings record invalid: {exc}")
        return SettingsSnapshot(settings=settings, revision=revision, loaded_at=now)

    def _degraded(self, now: float, reason: str) -> SettingsSnapshot:
        logger.warning("[Settings] Serving built-in defaults: %s", reason)
        return SettingsSnapshot(
            settings=default_settings(),
            revision=-1,
            loaded_at=now,
            degraded=ConfigurationDegraded(reason),
        )

    # ------------------------------------------------------------------
    # Administrative update
    # ------------------------------------------------------------------

    def update_config(
        self,
        partial: Mapping[str, Any],
        mode: ListingMode | str | None = None,
    ) -> GlobalSettings:
        """
        Merge `partial` over the stored settings and commit atomically.

        With `mode`, `partial` is a `ModeQuotaConfig` fragment for that mode;
        without it, a `GlobalSettings` fragment. Raises ConfigError when the
        merged result is invalid (e.g. a negative quota) or when concurrent
        writers kept moving the revision.
        """
        patch = _normalize_patch(partial, mode)

        for attempt in range(1, self._cfg.settings_write_retries + 1):
            raw, revision = self._store.read_settings()
            base = self._base_document(raw)
            merged = deep_merge(base, patch)
            try:
                updated = GlobalSettings.load(merged)
            except ValidationError as exc:
                raise ConfigError(f"Invalid settings update: {exc}") from exc

            if self._store.compare_and_set_settings(revision, updated.to_dict()):
                self.invalidate()
                logger.info("[Settings] Updated listing limits (revision %d -> %d)", revision, revision + 1)
                return updated
            logger.debug("[Settings] Revision %d moved during update (attempt %d)", revision, attempt)

        raise ConfigError("Settings changed concurrently; update not applied.")

    @staticmethod
    def _base_document(raw: dict[str, Any] | None) -> dict[str, Any]:
        if raw is None:
            return default_settings().to_dict()
        try:
            return GlobalSettings.load(raw).to_dict()
        except (ValidationError, TypeError) as exc:
            logger.warning("[Settings] Stored record invalid, rebuilding from defaults: %s", exc)
            return default_settings().to_dict()


def _normalize_patch(partial: Mapping[str, Any], mode: ListingMode | str | None) -> dict[str, Any]:
    if not isinstance(partial, Mapping):
        raise ConfigError(f"Settings update must be a mapping, got {type(partial)!r}")
    if mode is not None:
        try:
            mode = ListingMode.parse(mode)
        except ValueError as exc:
            raise ConfigError(f"Unknown listing mode: {mode!r}") from exc
        patch: dict[str, Any] = {mode.value: dict(partial)}
    else:
        patch = dict(partial)

    for key in (ListingMode.LONG_TERM.value, ListingMode.SHORT_TERM.value):
        block = patch.get(key)
        if not isinstance(block, Mapping):
            continue
        block = dict(block)
        categories = block.get("free_listings_by_category")
        if isinstance(categories, Mapping):
            normalized: dict[str, Any] = {}
            for raw_key, value in categories.items():
                category = UserCategory.parse(raw_key)
                if category is None:
                    raise ConfigError(f"Unknown user category: {raw_key!r}")
                normalized[category.value] = value
            block["free_listings_by_category"] = normalized
        patch[key] = block
    return patch
