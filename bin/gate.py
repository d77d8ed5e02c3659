"""DK-API session gate: may this request use this model, and as whom?

The free-tier model is open to everyone and acts as the anonymous identity.
Every other model needs a session id that already exists in the store; the
identity is whatever that session document carries.

This is an existence check, not authentication.  Session ids are bearer
values: anyone who learns or guesses one that exists is accepted as that
session's user.  Nothing is signed or verified.
"""

from __future__ import annotations

from outcome import ErrorKind, Result
from providers import ProviderRegistry
from state import ANONYMOUS, Identity
from store import SessionStore, fetch_session


MSG_MISSING_SESSION = "session_id é obrigatório para modelos premium"
MSG_INVALID_SESSION = "session_id inválido ou não encontrado"
MSG_AUTH_ERROR = "Erro na autenticação"


def authorize(
    registry: ProviderRegistry,
    store: SessionStore,
    model_id: str,
    session_id: str | None,
) -> Result[Identity]:
    """Resolve the acting identity for *model_id*, or a 401-class failure.

    Read-only: never creates a session.  A store failure during the lookup
    is reported as StoreUnavailable with the generic authentication message
    (surfaced as 401 by the HTTP layer).
    """
    if registry.is_free(model_id):
        return Result.success(ANONYMOUS)

    if not session_id:
        return Result.failure(ErrorKind.MISSING_SESSION, MSG_MISSING_SESSION)

    lookup = fetch_session(store, session_id)
    if not lookup.ok:
        return Result.failure(ErrorKind.STORE_UNAVAILABLE, MSG_AUTH_ERROR, detail=lookup.detail)
    if lookup.value is None:
        return Result.failure(ErrorKind.INVALID_SESSION, MSG_INVALID_SESSION)
    return Result.success(Identity.from_session(lookup.value))
