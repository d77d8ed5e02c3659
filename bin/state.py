"""DK-API session state: document shape, turn records, ids and timestamps.

A session document is a plain dict so it round-trips through every store
backend unchanged:

    {
      "user_id": "...", "user_email": "...", "session_id": "...",
      "timestamp": <epoch ms of the last write>,
      "context_text": "Usuário: ...\\nDKGPT: ...\\n\\nUsuário: ...",
      "turns": [ {id, message_rendered, reply_rendered, created_at, model_display_name}, ... ],
      "last_updated": "dd/mm/YYYY HH:MM:SS"
    }

Every write replaces the whole document.  Nothing here merges or locks.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
ANONYMOUS_ID = "anonymous"
ANONYMOUS_EMAIL = "anonymous@user.com"

USER_LABEL = "Usuário"  # Role prefix for user text in context and turns.
ASSISTANT_LABEL = "DKGPT"  # Role prefix for replies, regardless of model.

DATAHORA_FORMAT = "%d/%m/%Y %H:%M:%S"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Identity:
    """Acting identity for one request."""

    user_id: str = ANONYMOUS_ID
    email: str = ANONYMOUS_EMAIL

    @classmethod
    def from_session(cls, doc: Dict[str, Any]) -> "Identity":
        """Identity stored on a session, falling back to anonymous per field."""
        return cls(
            user_id=str(doc.get("user_id") or ANONYMOUS_ID),
            email=str(doc.get("user_email") or ANONYMOUS_EMAIL),
        )


ANONYMOUS = Identity()


# ---------------------------------------------------------------------------
# Time and id helpers
# ---------------------------------------------------------------------------
def now_millis() -> int:
    return round(time.time() * 1000)


def datahora(now: datetime | None = None) -> str:
    """Human-readable local timestamp, e.g. 05/03/2026 14:07:09."""
    return (now or datetime.now()).strftime(DATAHORA_FORMAT)


def new_session_id() -> str:
    """Fresh session id for callers that did not supply one."""
    return f"sess_{uuid.uuid4().hex}"


def new_turn_id() -> str:
    return f"conv_{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def render_user(message: str) -> str:
    return f"{USER_LABEL}: {message}"


def render_reply(answer: str) -> str:
    return f"{ASSISTANT_LABEL}: {answer}"


def extend_context(context_text: str, message: str, answer: str) -> str:
    """Append one exchange to the accumulated context string.

    Earlier text is never rewritten; only leading/trailing whitespace of the
    combined string is trimmed, so the first exchange has no blank prefix.
    """
    return f"{context_text}\n\n{render_user(message)}\n{render_reply(answer)}".strip()


def make_turn(message: str, answer: str, model_display_name: str) -> Dict[str, Any]:
    """Build one Turn record."""
    return {
        "id": new_turn_id(),
        "message_rendered": render_user(message),
        "reply_rendered": render_reply(answer),
        "created_at": datahora(),
        "model_display_name": model_display_name,
    }


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------
# Portuguese field names used by sessions written before the English schema.
_LEGACY_SESSION_KEYS = {
    "contexto_geral": "context_text",
    "conversas": "turns",
    "ultima_atualizacao": "last_updated",
}
_LEGACY_TURN_KEYS = {
    "mensagem": "message_rendered",
    "resposta": "reply_rendered",
    "data_hora": "created_at",
    "modelo": "model_display_name",
}


def _rename_legacy(item: Dict[str, Any], keys: Dict[str, str]) -> Dict[str, Any]:
    """Move legacy keys onto their current names; current names win."""
    for old, new in keys.items():
        if old in item:
            value = item.pop(old)
            if not item.get(new):
                item[new] = value
    return item


def _normalize_turns(raw: Any) -> List[Dict[str, Any]]:
    """Coerce stored turns into a list of dicts, preserving order.

    Firebase returns JSON arrays written by other clients as either lists or
    index-keyed objects; both are accepted.
    """
    if isinstance(raw, dict):
        try:
            raw = [raw[k] for k in sorted(raw, key=lambda k: int(k))]
        except (TypeError, ValueError):
            raw = list(raw.values())
    if not isinstance(raw, list):
        return []
    return [_rename_legacy(dict(t), _LEGACY_TURN_KEYS) for t in raw if isinstance(t, dict)]


def normalize_session(raw: Any, session_id: str) -> Dict[str, Any]:
    """Return a session dict with every field present.

    Legacy Portuguese fields (contexto_geral, conversas, ...) are mapped onto
    the current names so older sessions keep their history.  Missing identity
    fields stay missing-as-anonymous (see Identity).  Unknown fields are
    carried through untouched.
    """
    item = _rename_legacy(dict(raw), _LEGACY_SESSION_KEYS) if isinstance(raw, dict) else {}
    item.setdefault("session_id", session_id)
    item["context_text"] = str(item.get("context_text") or "")
    item["turns"] = _normalize_turns(item.get("turns"))
    return item


def build_session_document(
    previous: Dict[str, Any] | None,
    identity: Identity,
    session_id: str,
    message: str,
    answer: str,
    model_display_name: str,
) -> Dict[str, Any]:
    """Produce the full replacement document after one chat turn.

    *previous* is not mutated.  Identity is the one resolved for this request
    (stored identity for premium calls, anonymous for the free tier), which
    matches the behaviour of binding identity on every write.
    """
    prior = normalize_session(previous, session_id)
    turns = list(prior["turns"])
    turns.append(make_turn(message, answer, model_display_name))
    return {
        "user_id": identity.user_id,
        "user_email": identity.email,
        "session_id": session_id,
        "timestamp": now_millis(),
        "context_text": extend_context(prior["context_text"], message, answer),
        "turns": turns,
        "last_updated": datahora(),
    }
