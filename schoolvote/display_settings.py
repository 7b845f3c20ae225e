"""Per-election public result display settings."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from .events import Subscribers
from .models import DisplaySettings, PositionDisplayConfig, normalize_keys, utcnow
from .persistence import RecordStore

logger = logging.getLogger(__name__)

NAMESPACE = "display_settings"

DisplaySettingsListener = Callable[[List[DisplaySettings]], None]


def create_default_settings(election_id: str, position_ids: Iterable[str]) -> DisplaySettings:
    """Unpublished settings with one default config per position. Not persisted."""
    return DisplaySettings(
        election_id=str(election_id),
        position_configs=[PositionDisplayConfig(position_id=str(pid)) for pid in position_ids],
    )


class DisplaySettingsStore:

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._subscribers: Subscribers[List[DisplaySettings]] = Subscribers("display_settings")

    def subscribe(self, listener: DisplaySettingsListener) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    def _save(self, settings: DisplaySettings) -> None:
        self._store.put(NAMESPACE, settings.election_id, settings.model_dump(mode="json"))
        self._subscribers.notify(self.get_all_display_settings())

    def get_all_display_settings(self) -> List[DisplaySettings]:
        return [DisplaySettings.model_validate(row) for row in self._store.list(NAMESPACE)]

    def get_display_settings(self, election_id: str) -> Optional[DisplaySettings]:
        row = self._store.get(NAMESPACE, str(election_id))
        return DisplaySettings.model_validate(row) if row else None

    def get_or_create_display_settings(self, election_id: str, position_ids: Iterable[str]) -> DisplaySettings:
        """Return the election's settings, creating them or appending configs for new positions.

        Appended configs take the election's current global flags. Existing
        configs are never touched.
        """
        position_ids = [str(pid) for pid in position_ids]
        existing = self.get_display_settings(election_id)
        if existing is None:
            settings = create_default_settings(election_id, position_ids)
            self._save(settings)
            logger.info("Created display settings for election %s", election_id,
                        extra={"election_id": str(election_id)})
            return settings

        known = {config.position_id for config in existing.position_configs}
        missing = []
        for position_id in position_ids:
            if position_id not in known:
                known.add(position_id)
                missing.append(PositionDisplayConfig(
                    position_id=position_id,
                    show_raw_score=existing.global_show_raw_score,
                    show_winner_only=existing.global_show_winner_only,
                ))
        if not missing:
            return existing

        updated = existing.model_copy(update={"position_configs": existing.position_configs + missing})
        self._save(updated)
        logger.info("Added %d position config(s) to election %s", len(missing), election_id,
                    extra={"election_id": str(election_id)})
        return updated

    def update_display_settings(self, election_id: str, changes: Mapping[str, Any]) -> Optional[DisplaySettings]:
        current = self.get_display_settings(election_id)
        if current is None:
            return None
        updates = normalize_keys(DisplaySettings, changes)
        updates.pop("election_id", None)
        updated = DisplaySettings.model_validate({**current.model_dump(), **updates})
        self._save(updated)
        return updated

    def update_position_config(self, election_id: str, position_id: str,
                               changes: Mapping[str, Any]) -> Optional[DisplaySettings]:
        """Update one position's config.

        An unknown ``position_id`` within a known election changes nothing and
        returns the settings as they are.
        """
        current = self.get_display_settings(election_id)
        if current is None:
            return None
        if current.position_config(str(position_id)) is None:
            logger.warning("No display config for position %s in election %s", position_id, election_id,
                           extra={"election_id": str(election_id)})
            return current

        updates = normalize_keys(PositionDisplayConfig, changes)
        updates.pop("position_id", None)
        configs = [
            PositionDisplayConfig.model_validate({**config.model_dump(), **updates})
            if config.position_id == str(position_id) else config
            for config in current.position_configs
        ]
        return self.update_display_settings(election_id, {"position_configs": configs})

    def publish_results(self, election_id: str) -> Optional[DisplaySettings]:
        settings = self.update_display_settings(election_id, {
            "is_published": True,
            "published_at": utcnow(),
        })
        if settings is not None:
            logger.info("Published results for election %s", election_id, extra={"election_id": str(election_id)})
        return settings

    def unpublish_results(self, election_id: str) -> Optional[DisplaySettings]:
        settings = self.update_display_settings(election_id, {
            "is_published": False,
            "published_at": None,
        })
        if settings is not None:
            logger.info("Unpublished results for election %s", election_id, extra={"election_id": str(election_id)})
        return settings

    def apply_global_settings(self, election_id: str, show_raw_score: bool,
                              show_winner_only: bool) -> Optional[DisplaySettings]:
        """Set the global flags and overwrite the same flags on every position."""
        current = self.get_display_settings(election_id)
        if current is None:
            return None
        configs = [
            config.model_copy(update={"show_raw_score": show_raw_score, "show_winner_only": show_winner_only})
            for config in current.position_configs
        ]
        return self.update_display_settings(election_id, {
            "global_show_raw_score": show_raw_score,
            "global_show_winner_only": show_winner_only,
            "position_configs": configs,
        })

    def delete_display_settings(self, election_id: str) -> bool:
        removed = self._store.delete(NAMESPACE, str(election_id))
        if removed:
            self._subscribers.notify(self.get_all_display_settings())
        return removed

    def reset_display_settings(self) -> None:
        self._store.clear(NAMESPACE)
        logger.warning("Display settings reset")
        self._subscribers.notify([])
