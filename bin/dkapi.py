#!/usr/bin/env python3
"""DK-API unified chat gateway.

Flask server that fronts one free worker model and several premium Gemini
models under DK-branded names, keeps per-session conversation context in a
document store, and answers every chat call in one response shape.

Usage:
    export GEMINI_API_KEY=...        # premium models
    export WORKERS_API_URL=...       # free-tier worker prefix
    export DKAPI_STORE=firebase      # or memory / jsonl
    python bin/dkapi.py --debug

Then:
    curl 'http://localhost:3000/api/chat?message=Olá'
"""

from __future__ import annotations

import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask, request as flask_request, jsonify
from werkzeug.exceptions import HTTPException

# Ensure bin/ is on the path so sibling modules are importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

import config as config_mod
from caller import OutboundCaller
from config import Config, _env_bool, _load_config_yaml, load_config, parse_args
from gate import authorize
from history import get_history
from outcome import ErrorKind
from providers import ProviderRegistry, build_registry
from response import MSG_INTERNAL_ERROR, ChatOrchestrator
from state import datahora
from store import SessionStore, build_store


API_BANNER = "🎯 DK-API Unificada funcionando!"


# ---------------------------------------------------------------------------
# Flask app factory
# ---------------------------------------------------------------------------
def create_app(
    cfg: Config,
    registry: ProviderRegistry | None = None,
    store: SessionStore | None = None,
    caller: OutboundCaller | None = None,
) -> Flask:
    """Create the DK-API Flask application.

    Collaborators default to what *cfg* describes; tests pass their own.
    """
    registry = registry or build_registry(cfg)
    store = store if store is not None else build_store(cfg)
    caller = caller or OutboundCaller(timeout_s=cfg.timeout_s)
    orchestrator = ChatOrchestrator(registry, store, caller, support=cfg.support)

    app = Flask(__name__, static_folder=None)
    app.json.ensure_ascii = False
    app.extensions["dkapi"] = {"registry": registry, "store": store, "orchestrator": orchestrator}

    @app.after_request
    def add_cors_headers(response):
        """Open CORS on every response."""
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    @app.errorhandler(Exception)
    def unexpected_error(exc):
        """Last-resort 500 with no internal detail."""
        if isinstance(exc, HTTPException):
            return exc
        print(f"[DK-API] Unhandled error on {flask_request.path}: {type(exc).__name__}: {exc}")
        if flask_request.path.startswith("/api/historico"):
            return jsonify({"success": False, "error": "Erro interno do servidor"}), 500
        return jsonify({"erro": True, "ans": MSG_INTERNAL_ERROR, "data_hora": datahora()}), 500

    @app.route("/api/chat", methods=["GET", "OPTIONS"])
    def chat():
        """Validate, gate, then run one chat turn."""
        if flask_request.method == "OPTIONS":
            return ("", 200)

        message = flask_request.args.get("message") or ""
        model_id = flask_request.args.get("modelo", registry.free_model_id)
        session_id = (flask_request.args.get("session_id") or "").strip() or None

        checked = orchestrator.validate(model_id, message)
        if not checked.ok:
            return jsonify({"erro": True, "ans": checked.message}), checked.status

        gate = authorize(registry, store, model_id, session_id)
        if not gate.ok:
            if gate.error is ErrorKind.STORE_UNAVAILABLE:
                print(f"[DK-API] Gate store failure for session '{session_id}': {gate.detail}")
            # Every gate failure, store trouble included, is an authentication failure.
            return jsonify({"erro": True, "ans": gate.message}), 401

        result = orchestrator.handle_chat(model_id, message, session_id=session_id, identity=gate.value)
        if not result.ok:
            return jsonify({"erro": True, "ans": result.message}), result.status
        return jsonify(result.value.to_json())

    @app.route("/api/historico", methods=["GET"])
    def historico():
        """Return the stored turns of one session."""
        session_id = (flask_request.args.get("session_id") or "").strip() or None
        result = get_history(store, session_id)
        if not result.ok:
            return jsonify({"success": False, "error": result.message}), result.status
        return jsonify({"success": True, "data": result.value})

    @app.route("/api", methods=["GET"])
    def api_index():
        """Static service descriptor."""
        return jsonify({
            "message": API_BANNER,
            "status": "online",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "endpoints": {
                "GET /api/chat?message=...": "Chat gratuito (modelo free)",
                "GET /api/chat?message=...&modelo=...&session_id=...": "Chat premium",
                "GET /api/historico?session_id=...": "Buscar histórico",
            },
            "modelos_disponiveis": registry.model_ids,
        })

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main() -> int:
    """Entrypoint for server startup."""
    args = parse_args()
    config_mod.DEBUG_MODE = args.debug or _env_bool("DKAPI_DEBUG", False)
    if args.store:
        os.environ["DKAPI_STORE"] = args.store

    cfg_yaml = _load_config_yaml()
    cfg = load_config(cfg_yaml)
    if args.host:
        cfg = replace(cfg, bind_host=args.host)
    if args.port:
        cfg = replace(cfg, bind_port=args.port)

    registry = build_registry(cfg, cfg_yaml)
    store = build_store(cfg)

    print(f"\n{'='*60}")
    print(f"  DK-API Unified Gateway")
    print(f"{'='*60}")
    print(f"  Store      : {store.name}"
          f"{f' ({cfg.state_file})' if store.name == 'jsonl' else ''}")
    print(f"  Bind       : {cfg.bind_host}:{cfg.bind_port}")
    print(f"  Models     :")
    for spec in registry.models.values():
        if spec.is_free:
            status = "ok" if cfg.workers_api_url else "NO WORKER URL"
        else:
            status = "ok" if registry.credential else "NO KEY"
        print(f"    {spec.model_id} -> {spec.display_name} ({spec.tier}, {status})")
    print(f"  Config YAML: {config_mod._CONFIG_YAML_STATUS}")
    print(f"  Timeout    : {cfg.timeout_s:g}s provider, {cfg.store_timeout_s:g}s store")
    print(f"  Debug      : {'ON' if config_mod.DEBUG_MODE else 'off'}")
    print(f"  API        : http://{cfg.bind_host}:{cfg.bind_port}/api")
    print(f"{'='*60}\n")

    app = create_app(cfg, registry=registry, store=store)
    app.run(host=cfg.bind_host, port=cfg.bind_port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
