from .change_feed import ChangeFeed
from .conversation_store import ConversationStore, Subscription
from .database import SQLiteChatDB
from .identity import AnonymousIdentity, AnonymousIdentityProvider
from .scope_guard import CHAT_COLLECTION, ConversationScopeError, ConversationScopeGuard

__all__ = [
    "CHAT_COLLECTION",
    "AnonymousIdentity",
    "AnonymousIdentityProvider",
    "ChangeFeed",
    "ConversationScopeError",
    "ConversationScopeGuard",
    "ConversationStore",
    "SQLiteChatDB",
    "Subscription",
]
