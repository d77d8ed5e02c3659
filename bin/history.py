"""DK-API history reader: read-only projection of a stored session."""

from __future__ import annotations

from typing import Any, Dict

from outcome import ErrorKind, Result
from state import USER_LABEL, normalize_session
from store import SessionStore, fetch_session


MSG_MISSING_SESSION_ID = "session_id é obrigatório"
MSG_SESSION_NOT_FOUND = "Sessão não encontrada"
MSG_STORE_ERROR = "Erro interno do servidor"


def display_name_for(email: str | None) -> str:
    """Local part of the e-mail, or the generic user label."""
    if email:
        local = str(email).split("@", 1)[0].strip()
        if local:
            return local
    return USER_LABEL


def get_history(store: SessionStore, session_id: str | None) -> Result[Dict[str, Any]]:
    if not session_id:
        return Result.failure(ErrorKind.MISSING_SESSION_ID, MSG_MISSING_SESSION_ID)

    lookup = fetch_session(store, session_id)
    if not lookup.ok:
        print(f"[DK-API] History read failed for session '{session_id}': {lookup.detail}")
        return Result.failure(ErrorKind.STORE_UNAVAILABLE, MSG_STORE_ERROR, detail=lookup.detail)
    if lookup.value is None:
        return Result.failure(ErrorKind.SESSION_NOT_FOUND, MSG_SESSION_NOT_FOUND)

    doc = normalize_session(lookup.value, session_id)
    return Result.success({
        "user": {
            "display_name": display_name_for(doc.get("user_email")),
            "id": doc.get("user_id") or "",
        },
        "session_id": doc["session_id"],
        "timestamp": doc.get("timestamp"),
        "turns": doc["turns"],
    })
