"""
UI reactions - sidebar behaviour that follows chat and viewport events.

On mobile the sidebar covers the conversation, so it closes after a
conversation is picked or created, when a message is sent, after navigating
to another page and when the viewport shrinks to mobile width.
"""

from typing import Callable, List

from infrastructure.monitoring.logging_service import get_logger
from services.chat_service.actions import ChatAction, ConversationAdded, ConversationSelected, SendStarted
from services.chat_service.conversation_store import ConversationStore
from services.chat_service.models import ChatState
from services.ui_service.preferences import UIPreferences, UIPreferenceStore

logger = get_logger(__name__)


def bind_sidebar_reactions(store: ConversationStore, preferences: UIPreferenceStore) -> Callable[[], None]:
    """
    Wire sidebar auto-close to the conversation and preference stores

    Returns:
        Callable that unbinds both subscriptions
    """

    def on_chat_action(action: ChatAction, state: ChatState):
        if not isinstance(action, (ConversationSelected, ConversationAdded, SendStarted)):
            return
        if preferences.preferences.is_mobile and preferences.preferences.sidebar_open:
            logger.debug("Closing sidebar after conversation activity on mobile")
            preferences.set_sidebar_open(False)

    def on_preferences_change(previous: UIPreferences, current: UIPreferences):
        if not current.is_mobile or not current.sidebar_open:
            return
        became_mobile = not previous.is_mobile
        navigated = previous.current_page != current.current_page
        if became_mobile or navigated:
            logger.debug("Closing sidebar on mobile")
            preferences.set_sidebar_open(False)

    unsubscribers: List[Callable[[], None]] = [
        store.subscribe(on_chat_action),
        preferences.subscribe(on_preferences_change),
    ]

    def unbind():
        for unsubscribe in unsubscribers:
            unsubscribe()

    return unbind
