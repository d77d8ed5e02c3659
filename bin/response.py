"""DK-API response pipeline: prompt assembly, provider dispatch, normalization,
and session persistence.

One chat turn:
  1. resolve the model in the registry (before any I/O)
  2. read the session and its accumulated context
  3. prompt = persona + context + the new user line
  4. one outbound call (GET for the free worker, POST for premium models)
  5. normalize the provider body into a single answer string
  6. append the turn and overwrite the whole session document
  7. return the unified reply

Provider failure never aborts the turn: the caller gets a fallback answer
with erro=true, and the turn is still recorded.  Persistence failure is
printed and dropped.  Read-modify-write is not guarded, so two concurrent
turns on one session id are last-writer-wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import config as config_mod
from caller import OutboundCaller, mask_url
from config import DEFAULT_SUPPORT
from outcome import ErrorKind, Result
from providers import ModelSpec, ProviderRegistry
from state import (
    ANONYMOUS,
    Identity,
    USER_LABEL,
    build_session_document,
    datahora,
    new_session_id,
    normalize_session,
)
from store import SessionStore, fetch_session, save_session


FALLBACK_ANSWER = "Sem resposta do modelo no momento. Tente novamente."
MSG_EMPTY_MESSAGE = "Parâmetro 'message' é obrigatório"
MSG_INTERNAL_ERROR = "Erro interno do servidor. Tente novamente."


def unknown_model_message(registry: ProviderRegistry) -> str:
    return "Modelo inválido. Modelos disponíveis: " + ", ".join(registry.model_ids)


# ---------------------------------------------------------------------------
# Unified reply
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ChatReply:
    """The one outward shape every successful chat call returns."""

    error: bool  # True iff the provider path failed and `answer` is the fallback.
    answer: str
    model_display_name: str
    support: str
    session_id: str
    timestamp: str  # datahora() at reply time.

    def to_json(self) -> Dict[str, Any]:
        return {
            "erro": self.error,
            "ans": self.answer,
            "modelo": self.model_display_name,
            "support": self.support,
            "sessionid": self.session_id,
            "data_hora": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Prompt and payloads
# ---------------------------------------------------------------------------
def build_prompt(persona: str, context_text: str, message: str) -> str:
    """Persona, blank line, accumulated context, blank line, new user line."""
    return f"{persona}\n\n{context_text}\n\n{USER_LABEL}: {message}"


def to_gemini_payload(prompt: str) -> Dict[str, Any]:
    """generateContent envelope carrying the whole prompt as one user part."""
    return {"contents": [{"parts": [{"text": prompt}]}]}


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------
def normalize_free(body: Any) -> Optional[str]:
    """Answer from the free worker: body present, no error field, non-empty answer."""
    if not isinstance(body, dict):
        return None
    if body.get("error"):
        return None
    answer = body.get("answer")
    if isinstance(answer, str) and answer.strip():
        return answer
    return None


def normalize_gemini(body: Any) -> Optional[str]:
    """Text of the first candidate's first part, when there is one."""
    if not isinstance(body, dict):
        return None
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    if isinstance(text, str) and text.strip():
        return text
    return None


def _provider_error_detail(body: Any) -> str:
    """Short description of why a provider body did not normalize (for logs only)."""
    if body is None:
        return "empty body"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)[:300]
        if err:
            return str(err)[:300]
        if "candidates" in body:
            return "candidate without text"
        if "answer" in body:
            return "empty answer"
        return f"unexpected keys: {sorted(body.keys())[:8]}"
    return f"unexpected body type: {type(body).__name__}"


# ---------------------------------------------------------------------------
# Provider dispatch
# ---------------------------------------------------------------------------
def _call_free(caller: OutboundCaller, registry: ProviderRegistry, spec: ModelSpec, prompt: str) -> Result[str]:
    """GET the worker with the prompt URL-encoded into the URL."""
    url = registry.endpoint_for(spec, prompt)
    fetched = caller.get(url)
    if not fetched.ok:
        return fetched
    answer = normalize_free(fetched.value)
    if answer is None:
        return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE, detail=_provider_error_detail(fetched.value))
    return Result.success(answer)


def _call_gemini(caller: OutboundCaller, registry: ProviderRegistry, spec: ModelSpec, prompt: str) -> Result[str]:
    """POST a generateContent request for a premium model."""
    url = registry.endpoint_for(spec)
    fetched = caller.post(url, to_gemini_payload(prompt))
    if not fetched.ok:
        return fetched
    answer = normalize_gemini(fetched.value)
    if answer is None:
        return Result.failure(ErrorKind.PROVIDER_UNAVAILABLE, detail=_provider_error_detail(fetched.value))
    return Result.success(answer)


def _call_provider(caller: OutboundCaller, registry: ProviderRegistry, spec: ModelSpec, prompt: str) -> Result[str]:
    if spec.is_free:
        return _call_free(caller, registry, spec, prompt)
    return _call_gemini(caller, registry, spec, prompt)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class ChatOrchestrator:
    """Runs chat turns against an injected registry, store and caller."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: SessionStore,
        caller: OutboundCaller,
        support: str = DEFAULT_SUPPORT,
    ):
        self.registry = registry
        self.store = store
        self.caller = caller
        self.support = support

    def validate(self, model_id: str, message: str) -> Result[ModelSpec]:
        """Input checks shared by the HTTP layer and handle_chat."""
        if not (message or "").strip():
            return Result.failure(ErrorKind.EMPTY_MESSAGE, MSG_EMPTY_MESSAGE)
        spec = self.registry.resolve(model_id)
        if spec is None:
            return Result.failure(ErrorKind.UNKNOWN_MODEL, unknown_model_message(self.registry),
                                  detail=model_id)
        return Result.success(spec)

    def handle_chat(
        self,
        model_id: str,
        message: str,
        session_id: str | None = None,
        identity: Identity = ANONYMOUS,
    ) -> Result[ChatReply]:
        """Run one chat turn.  Only validation failures come back as errors."""
        checked = self.validate(model_id, message)
        if not checked.ok:
            return checked
        spec = checked.value
        session_id = session_id or new_session_id()

        # Prior context.  An unreadable session degrades to empty context and
        # is not written back, so a document we could not read is never clobbered.
        lookup = fetch_session(self.store, session_id)
        if lookup.ok:
            previous = lookup.value
        else:
            print(f"[DK-API] Context read failed for session '{session_id}': {lookup.detail}")
            previous = None
        prior = normalize_session(previous, session_id)

        prompt = build_prompt(self.registry.persona_for(spec), prior["context_text"], message)
        print(f"[DK-API] Chat: model='{spec.model_id}', session='{session_id}', "
              f"context={len(prior['context_text'])} chars, turns={len(prior['turns'])}")
        if config_mod.DEBUG_MODE:
            print(f"[DEBUG] Endpoint: {mask_url(self.registry.endpoint_for(spec))}")
            print(f"[DEBUG] Prompt ({len(prompt)} chars): {prompt[:200]}{'...' if len(prompt) > 200 else ''}")

        outcome = _call_provider(self.caller, self.registry, spec, prompt)
        if outcome.ok:
            answer, failed = outcome.value, False
        else:
            print(f"[DK-API] Provider failure for model '{spec.model_id}': {outcome.detail}")
            answer, failed = FALLBACK_ANSWER, True
        if config_mod.DEBUG_MODE:
            print(f"[DEBUG] ← Answer ({len(answer)} chars, erro={failed}): {answer[:120]}...")

        if lookup.ok:
            doc = build_session_document(previous, identity, session_id, message, answer, spec.display_name)
            saved = save_session(self.store, session_id, doc)
            if not saved.ok:
                print(f"[DK-API] Context write failed for session '{session_id}': {saved.detail}")
        else:
            print(f"[DK-API] Skipping context write for session '{session_id}' (read failed)")

        return Result.success(ChatReply(
            error=failed,
            answer=answer,
            model_display_name=spec.display_name,
            support=self.support,
            session_id=session_id,
            timestamp=datahora(),
        ))
