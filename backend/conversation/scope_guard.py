from __future__ import annotations

import re

from medassist_core.errors import PersistenceError

CHAT_COLLECTION = "medical_chat_history"


class ConversationScopeError(PersistenceError):
    code = "scope_error"


class ConversationScopeGuard:
    _ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{0,127}$")

    def ensure_scope(self, app_id: str, identity_id: str) -> None:
        if not app_id or not self._ID_RE.fullmatch(app_id):
            raise ConversationScopeError("Invalid application scope.")
        if not identity_id or not self._ID_RE.fullmatch(identity_id):
            raise ConversationScopeError("Invalid identity scope.")

    def ensure_owner(self, requested_identity_id: str, session_identity_id: str) -> None:
        if requested_identity_id != session_identity_id:
            raise ConversationScopeError("Cross-identity access is blocked.")

    def collection_path(self, app_id: str, identity_id: str) -> str:
        self.ensure_scope(app_id, identity_id)
        return f"artifacts/{app_id}/users/{identity_id}/{CHAT_COLLECTION}"
