"""DK-API session stores: whole-document get/set keyed by session id.

Three backends share one tiny interface (``get``/``set``):

  - MemorySessionStore: process-local dict (tests, local runs)
  - JsonlSessionStore: one JSON document per line, written atomically
  - FirebaseSessionStore: Firebase Realtime Database REST API

Backends raise StoreError for anything that goes wrong talking to the
underlying storage.  ``fetch_session``/``save_session`` turn those into
Results for the request pipeline.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from config import Config
from outcome import ErrorKind, Result


class StoreError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


# Characters the Realtime Database forbids in keys; also rejected locally so
# every backend accepts the same ids.
_FORBIDDEN_KEY_CHARS = re.compile(r"[.#$\[\]/\x00-\x1f\x7f]")


def _check_key(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id:
        raise StoreError("session id must be a non-empty string")
    if _FORBIDDEN_KEY_CHARS.search(session_id):
        raise StoreError(f"session id contains forbidden characters: {session_id!r}")
    return session_id


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------
class SessionStore:
    """Interface: whole-document reads and overwrites."""

    name = "abstract"

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None when nothing is stored."""
        raise NotImplementedError

    def set(self, session_id: str, doc: Dict[str, Any]) -> None:
        """Replace the document stored under *session_id*."""
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    name = "memory"

    def __init__(self, initial: Dict[str, Dict[str, Any]] | None = None):
        self._docs: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        _check_key(session_id)
        with self._lock:
            doc = self._docs.get(session_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, session_id: str, doc: Dict[str, Any]) -> None:
        _check_key(session_id)
        with self._lock:
            self._docs[session_id] = copy.deepcopy(doc)


class JsonlSessionStore(SessionStore):
    """Sessions in a single .jsonl file, one document per line.

    The file lock only protects the file itself; two requests on the same
    session still race on read-modify-write exactly like the remote backend.
    """

    name = "jsonl"

    def __init__(self, path: Path, *, reject_symlinks: bool = True):
        self.path = Path(path)
        self.reject_symlinks = reject_symlinks
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Dict[str, Any]]:
        if self.reject_symlinks and self.path.is_symlink():
            raise StoreError("State file cannot be a symlink")
        if not self.path.exists():
            return {}
        docs: Dict[str, Dict[str, Any]] = {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"cannot read {self.path.name}: {exc}") from exc
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                doc = json.loads(line)
            except json.JSONDecodeError as exc:
                raise StoreError(f"{self.path.name}:{lineno}: invalid JSON ({exc})") from exc
            if isinstance(doc, dict) and doc.get("session_id"):
                docs[str(doc["session_id"])] = doc
        return docs

    def _write_all(self, docs: Dict[str, Dict[str, Any]]) -> None:
        if self.reject_symlinks and self.path.exists() and self.path.is_symlink():
            raise StoreError("Refusing to write symlink state file")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = "".join(json.dumps(d, ensure_ascii=False) + "\n" for d in docs.values())

        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, str(self.path))
        except OSError as exc:
            raise StoreError(f"cannot write {self.path.name}: {exc}") from exc
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        _check_key(session_id)
        with self._lock:
            return self._read_all().get(session_id)

    def set(self, session_id: str, doc: Dict[str, Any]) -> None:
        _check_key(session_id)
        with self._lock:
            docs = self._read_all()
            stored = dict(doc)
            stored["session_id"] = session_id
            docs[session_id] = stored
            self._write_all(docs)


class FirebaseSessionStore(SessionStore):
    """Firebase Realtime Database over its REST API.

    Documents live at ``<database_url>/<root>/<session_id>.json``.  A GET that
    returns JSON ``null`` means the key is absent; PUT overwrites the node.
    """

    name = "firebase"

    def __init__(self, database_url: str, *, auth: str = "", root: str = "sessoes",
                 timeout_s: float = 10.0, http: requests.Session | None = None):
        if not database_url:
            raise ValueError("FIREBASE_DATABASE_URL is required for the firebase store")
        self.database_url = database_url.rstrip("/")
        self.auth = auth
        self.root = root.strip("/")
        self.timeout_s = timeout_s
        self.http = http or requests.Session()

    def _url(self, session_id: str) -> str:
        return f"{self.database_url}/{self.root}/{_check_key(session_id)}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth} if self.auth else {}

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        url = self._url(session_id)
        try:
            resp = self.http.get(url, params=self._params(), timeout=self.timeout_s)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise StoreError(f"firebase read failed: {exc}") from exc
        except ValueError as exc:
            raise StoreError(f"firebase returned invalid JSON: {exc}") from exc
        if data is None:
            return None
        if not isinstance(data, dict):
            raise StoreError(f"firebase node is not an object: {type(data).__name__}")
        return data

    def set(self, session_id: str, doc: Dict[str, Any]) -> None:
        url = self._url(session_id)
        try:
            resp = self.http.put(url, params=self._params(), json=doc, timeout=self.timeout_s)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StoreError(f"firebase write failed: {exc}") from exc


def build_store(cfg: Config) -> SessionStore:
    """Instantiate the backend named by cfg.store_backend."""
    if cfg.store_backend == "memory":
        return MemorySessionStore()
    if cfg.store_backend == "jsonl":
        return JsonlSessionStore(cfg.state_file)
    if cfg.store_backend == "firebase":
        return FirebaseSessionStore(
            cfg.firebase_database_url,
            auth=cfg.firebase_auth,
            timeout_s=cfg.store_timeout_s,
        )
    raise ValueError(f"Unknown store backend: {cfg.store_backend}")


# ---------------------------------------------------------------------------
# Result-returning wrappers used by the request pipeline
# ---------------------------------------------------------------------------
def fetch_session(store: SessionStore, session_id: str) -> Result[Optional[Dict[str, Any]]]:
    """Read a session; absence is a successful None, failure is StoreUnavailable."""
    try:
        return Result.success(store.get(session_id))
    except StoreError as exc:
        return Result.failure(ErrorKind.STORE_UNAVAILABLE, detail=str(exc))


def save_session(store: SessionStore, session_id: str, doc: Dict[str, Any]) -> Result[None]:
    try:
        store.set(session_id, doc)
        return Result.success(None)
    except StoreError as exc:
        return Result.failure(ErrorKind.STORE_UNAVAILABLE, detail=str(exc))
