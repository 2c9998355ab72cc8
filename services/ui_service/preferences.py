"""
UI preference store - theme, language, sidebar and page state.

The whole preference object is persisted under one key on every update; theme
and language are also written to their own keys so they can be read alone.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from config.app_config import UIConfig
from infrastructure.monitoring.logging_service import get_logger
from infrastructure.storage.storage_service import StorageKeys, StorageService

Theme = Literal["light", "dark"]
Language = Literal["en", "he"]
Page = Literal["chat", "settings"]


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


def classify_viewport(width: int, mobile_breakpoint: int = 768, tablet_breakpoint: int = 1024) -> DeviceType:
    """Classify a viewport width; breakpoints are exclusive upper bounds"""
    if width < mobile_breakpoint:
        return DeviceType.MOBILE
    if width < tablet_breakpoint:
        return DeviceType.TABLET
    return DeviceType.DESKTOP


class UIPreferences(BaseModel):
    """Persisted UI state"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    theme: Theme = "light"
    language: Language = "en"
    sidebar_open: bool = True
    current_page: Page = "chat"
    is_mobile: bool = False

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


PreferenceListener = Callable[[UIPreferences, UIPreferences], None]


class UIPreferenceStore:
    """
    Holds the current UIPreferences and keeps storage in sync.
    Listeners are called with (previous, current) after every change.
    """

    def __init__(self, storage: StorageService, config: Optional[UIConfig] = None):
        self.logger = get_logger(__name__)
        self.storage = storage
        self.config = config or UIConfig()
        self._preferences = self._defaults()
        self._listeners: List[PreferenceListener] = []
        self._viewport_width: Optional[int] = None

    def _defaults(self, is_mobile: bool = False) -> UIPreferences:
        return UIPreferences(
            theme=self.config.default_theme,
            language=self.config.default_language,
            sidebar_open=not is_mobile,
            is_mobile=is_mobile,
        )

    @property
    def preferences(self) -> UIPreferences:
        return self._preferences

    @property
    def device_type(self) -> DeviceType:
        """Device class of the last measured viewport, guessed from is_mobile before that"""
        if self._viewport_width is None:
            return DeviceType.MOBILE if self._preferences.is_mobile else DeviceType.DESKTOP
        return classify_viewport(self._viewport_width, self.config.mobile_breakpoint, self.config.tablet_breakpoint)

    def load(self) -> UIPreferences:
        """
        Restore preferences from storage

        The ui-state blob wins over the dedicated theme/language keys, which win
        over configured defaults. Invalid entries are skipped one by one.

        Returns:
            UIPreferences: The restored preferences
        """
        blob = self.storage.get(StorageKeys.UI_STATE)
        if blob is not None and not isinstance(blob, dict):
            self.logger.warning("Persisted UI state is not an object, ignoring it")
            blob = None

        dedicated: Dict[str, Any] = {}
        for key, storage_key in (("theme", StorageKeys.THEME), ("language", StorageKeys.LANGUAGE)):
            value = self.storage.get(storage_key)
            if value is not None:
                dedicated[key] = value

        # Later layers override earlier ones; a rejected entry keeps the earlier value
        preferences = self._defaults()
        for layer in (dedicated, blob or {}):
            for key, value in layer.items():
                try:
                    preferences = UIPreferences.model_validate({**preferences.to_storage(), key: value})
                except ValidationError:
                    self.logger.warning(f"Ignoring invalid persisted UI preference '{key}': {value!r}")

        self._preferences = preferences
        self.logger.debug(f"UI preferences loaded: theme={preferences.theme}, language={preferences.language}")
        return preferences

    def update(self, **changes) -> UIPreferences:
        """
        Apply a partial update, persist it and notify listeners

        Args:
            **changes: Field names of UIPreferences with their new values

        Raises:
            pydantic.ValidationError: A value is not allowed for its field
        """
        unknown = set(changes) - set(UIPreferences.model_fields)
        if unknown:
            raise ValueError(f"Unknown UI preference fields: {', '.join(sorted(unknown))}")

        previous = self._preferences
        current = UIPreferences.model_validate({**previous.model_dump(), **changes})
        if current == previous:
            return current

        self._preferences = current
        self._persist(current)

        for listener in list(self._listeners):
            try:
                listener(previous, current)
            except Exception as e:
                self.logger.error(f"UI preference listener failed: {e}")

        return current

    def _persist(self, preferences: UIPreferences):
        self.storage.set(StorageKeys.UI_STATE, preferences.to_storage())
        self.storage.set(StorageKeys.THEME, preferences.theme)
        self.storage.set(StorageKeys.LANGUAGE, preferences.language)

    def toggle_sidebar(self) -> UIPreferences:
        return self.update(sidebar_open=not self._preferences.sidebar_open)

    def set_sidebar_open(self, is_open: bool) -> UIPreferences:
        return self.update(sidebar_open=is_open)

    def set_current_page(self, page: Page) -> UIPreferences:
        return self.update(current_page=page)

    def set_theme(self, theme: Theme) -> UIPreferences:
        return self.update(theme=theme)

    def set_language(self, language: Language) -> UIPreferences:
        return self.update(language=language)

    def on_resize(self, width: int) -> UIPreferences:
        """Record a viewport measurement and recompute is_mobile"""
        self._viewport_width = width
        return self.update(is_mobile=width < self.config.mobile_breakpoint)

    def subscribe(self, listener: PreferenceListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self) -> UIPreferences:
        """Drop persisted preferences and return to defaults"""
        for key in StorageKeys.PREFERENCE_KEYS:
            self.storage.remove(key)

        previous = self._preferences
        self._preferences = self._defaults(is_mobile=previous.is_mobile)
        for listener in list(self._listeners):
            try:
                listener(previous, self._preferences)
            except Exception as e:
                self.logger.error(f"UI preference listener failed: {e}")

        self.logger.info("UI preferences reset")
        return self._preferences
