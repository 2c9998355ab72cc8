"""
Mutation actions and the reducer that applies them.

Every change to the conversation collection is one of the action variants below,
applied by chat_reducer to an immutable ChatState snapshot. The reducer is pure:
it never touches storage, the backend or the clock.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple, Union

from config.app_config import ChatConfig
from services.chat_service.helpers import limit_conversations, update_conversation_with_message
from services.chat_service.models import ChatError, ChatState, Conversation, LoadStatus, Message


@dataclass(frozen=True)
class LoadStarted:
    pass


@dataclass(frozen=True)
class LoadSucceeded:
    conversations: Tuple[Conversation, ...]
    current_conversation_id: Optional[str] = None


@dataclass(frozen=True)
class LoadFailed:
    error: ChatError


@dataclass(frozen=True)
class ConversationAdded:
    conversation: Conversation


@dataclass(frozen=True)
class ConversationSelected:
    conversation_id: str


@dataclass(frozen=True)
class ConversationRemoved:
    conversation_id: str


@dataclass(frozen=True)
class ConversationUpdated:
    conversation: Conversation


@dataclass(frozen=True)
class ConversationRekeyed:
    old_id: str
    new_id: str


@dataclass(frozen=True)
class MessageAppended:
    conversation_id: str
    message: Message
    timestamp: datetime


@dataclass(frozen=True)
class SendStarted:
    conversation_id: str
    message_id: str


@dataclass(frozen=True)
class SendSucceeded:
    conversation_id: str
    message_id: str


@dataclass(frozen=True)
class SendFailed:
    conversation_id: str
    message_id: str
    error: ChatError


@dataclass(frozen=True)
class ErrorRaised:
    error: ChatError


@dataclass(frozen=True)
class ErrorCleared:
    pass


@dataclass(frozen=True)
class StateReset:
    pass


ChatAction = Union[
    LoadStarted, LoadSucceeded, LoadFailed,
    ConversationAdded, ConversationSelected, ConversationRemoved,
    ConversationUpdated, ConversationRekeyed, MessageAppended,
    SendStarted, SendSucceeded, SendFailed,
    ErrorRaised, ErrorCleared, StateReset,
]


def _install(
    state: ChatState,
    conversations: Iterable[Conversation],
    config: ChatConfig,
    **changes
) -> ChatState:
    """
    Build a new state around a conversation list.

    Applies the capacity/recency rule, repoints a dangling selection at the most
    recently updated survivor and drops pending entries of evicted conversations.
    Conversations earlier in the input win ties on updated_at.
    """
    ordered = limit_conversations(conversations, config.max_conversations)
    collection = {c.id: c for c in ordered}

    current = changes.pop("current_conversation_id", state.current_conversation_id)
    if current is not None and current not in collection:
        current = ordered[0].id if ordered else None

    pending = {
        cid: ids for cid, ids in changes.pop("pending", state.pending).items()
        if ids and cid in collection
    }

    return replace(
        state,
        conversations=collection,
        current_conversation_id=current,
        pending=pending,
        **changes
    )


def _without_pending(pending: Dict[str, Tuple[str, ...]], conversation_id: str, message_id: str) -> Dict[str, Tuple[str, ...]]:
    remaining = tuple(m for m in pending.get(conversation_id, ()) if m != message_id)
    updated = dict(pending)
    if remaining:
        updated[conversation_id] = remaining
    else:
        updated.pop(conversation_id, None)
    return updated


def chat_reducer(state: ChatState, action: ChatAction, config: ChatConfig) -> ChatState:
    """Apply one action; returns the same object when nothing changes"""
    if isinstance(action, LoadStarted):
        return replace(state, status=LoadStatus.LOADING, last_error=None)

    if isinstance(action, LoadSucceeded):
        loaded_ids = {c.id for c in action.conversations}
        # Conversations created while the load was in flight are kept
        created_meanwhile = [c for c in state.conversations.values() if c.id not in loaded_ids]
        return _install(
            state,
            [*created_meanwhile, *action.conversations],
            config,
            current_conversation_id=state.current_conversation_id or action.current_conversation_id,
            status=LoadStatus.READY,
        )

    if isinstance(action, LoadFailed):
        return replace(state, status=LoadStatus.LOAD_FAILED, last_error=action.error)

    if isinstance(action, ConversationAdded):
        conversation = action.conversation
        others = [c for c in state.conversations.values() if c.id != conversation.id]
        return _install(
            state,
            [conversation, *others],
            config,
            current_conversation_id=conversation.id,
        )

    if isinstance(action, ConversationSelected):
        if action.conversation_id not in state.conversations:
            return state
        if action.conversation_id == state.current_conversation_id:
            return state
        return replace(state, current_conversation_id=action.conversation_id)

    if isinstance(action, ConversationRemoved):
        if action.conversation_id not in state.conversations:
            return state
        remaining = [c for c in state.conversations.values() if c.id != action.conversation_id]
        return _install(state, remaining, config)

    if isinstance(action, ConversationUpdated):
        conversation = action.conversation
        if conversation.id not in state.conversations:
            return state
        others = [c for c in state.conversations.values() if c.id != conversation.id]
        return _install(state, [conversation, *others], config)

    if isinstance(action, ConversationRekeyed):
        source = state.conversations.get(action.old_id)
        if source is None or action.new_id in state.conversations:
            return state
        rekeyed = source.model_copy(update={"id": action.new_id})
        conversations = [rekeyed if c.id == action.old_id else c for c in state.conversations.values()]
        pending = {
            (action.new_id if cid == action.old_id else cid): ids
            for cid, ids in state.pending.items()
        }
        current = state.current_conversation_id
        if current == action.old_id:
            current = action.new_id
        return _install(state, conversations, config, current_conversation_id=current, pending=pending)

    if isinstance(action, MessageAppended):
        target = state.conversations.get(action.conversation_id)
        if target is None:
            return state
        updated = update_conversation_with_message(
            target,
            action.message,
            now=action.timestamp,
            default_title=config.default_title,
            title_max_words=config.title_max_words,
            title_max_length=config.title_max_length,
        )
        others = [c for c in state.conversations.values() if c.id != target.id]
        return _install(state, [updated, *others], config)

    if isinstance(action, SendStarted):
        if action.conversation_id not in state.conversations:
            return state
        pending = dict(state.pending)
        pending[action.conversation_id] = (*pending.get(action.conversation_id, ()), action.message_id)
        return replace(state, pending=pending, last_error=None)

    if isinstance(action, SendSucceeded):
        return replace(
            state,
            pending=_without_pending(state.pending, action.conversation_id, action.message_id),
            last_error=None,
        )

    if isinstance(action, SendFailed):
        return replace(
            state,
            pending=_without_pending(state.pending, action.conversation_id, action.message_id),
            last_error=action.error,
        )

    if isinstance(action, ErrorRaised):
        return replace(state, last_error=action.error)

    if isinstance(action, ErrorCleared):
        if state.last_error is None:
            return state
        return replace(state, last_error=None)

    if isinstance(action, StateReset):
        return ChatState()

    raise TypeError(f"Unknown chat action: {action!r}")
