"""DK-API provider registry: model catalogue, tiers, endpoints and persona.

The registry is built once at startup from Config (secrets come from the
environment) and is immutable afterwards.  It is passed explicitly to the
gate, orchestrator and app factory so tests can substitute their own.

The persona asks the remote model to present itself under the DK display
name and never to name the company or model behind it.  That is an
instruction inside the prompt, nothing more: a user can talk the model out
of it, and nothing at the network layer enforces it.  Do not treat it as a
confidentiality boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import quote

from config import Config


FREE_MODEL_ID = "dk-ai-7.2-free"

TIER_FREE = "free"
TIER_PREMIUM = "premium"

PERSONA_TEMPLATE = (
    "Você é um modelo de linguagem avançado chamado {model}, desenvolvido pela empresa DK.\n"
    "\n"
    "Nunca mencione sua origem, nome, versão ou empresa, a menos que o usuário pergunte "
    "diretamente sobre isso.\n"
    "\n"
    "Responda normalmente às perguntas. Se o usuário perguntar sobre você, então explique "
    "que foi desenvolvido pela DK e que seu nome de modelo é {model}.\n"
    "\n"
    "Nunca mencione Google, Gemini, OpenAI ou ChatGPT sob nenhuma circunstância."
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ModelSpec:
    """One routable model identifier."""

    model_id: str  # Public identifier clients pass as ?modelo=.
    display_name: str  # Outward identity (the only name clients ever see).
    description: str
    tier: str  # TIER_FREE | TIER_PREMIUM
    endpoint_template: str  # Premium: URL waiting for the credential.  Free: URL waiting for the prompt.
    upstream_model: str = ""  # Remote model name; internal only.

    @property
    def is_free(self) -> bool:
        return self.tier == TIER_FREE


@dataclass(frozen=True)
class ProviderRegistry:
    """Immutable model-id -> ModelSpec mapping with exactly one free tier."""

    models: Mapping[str, ModelSpec]
    credential: str = field(default="", repr=False)  # Premium provider key.
    persona_template: str = PERSONA_TEMPLATE

    def __post_init__(self) -> None:
        free = [m.model_id for m in self.models.values() if m.is_free]
        if len(free) != 1:
            raise ValueError(f"Registry needs exactly one free-tier model, found {len(free)}: {free}")
        if not isinstance(self.models, MappingProxyType):
            object.__setattr__(self, "models", MappingProxyType(dict(self.models)))

    @property
    def model_ids(self) -> List[str]:
        return list(self.models.keys())

    @property
    def free_model_id(self) -> str:
        return next(m.model_id for m in self.models.values() if m.is_free)

    def resolve(self, model_id: str | None) -> ModelSpec | None:
        """Return the spec for *model_id*, or None when it is not routable."""
        if not model_id:
            return None
        return self.models.get(model_id)

    def is_free(self, model_id: str) -> bool:
        spec = self.resolve(model_id)
        return bool(spec and spec.is_free)

    def persona_for(self, spec: ModelSpec) -> str:
        """Render the persona with the model's display name."""
        return self.persona_template.replace("{model}", spec.display_name)

    def endpoint_for(self, spec: ModelSpec, prompt: str = "") -> str:
        """Build the concrete URL for one call.

        Premium: base URL + credential.  Free: worker URL + URL-encoded prompt.
        """
        if spec.is_free:
            return spec.endpoint_template + quote(prompt, safe="-_.!~*'()")
        return spec.endpoint_template + self.credential


# ---------------------------------------------------------------------------
# Default catalogue
# ---------------------------------------------------------------------------
# (model_id, upstream model, display name, description); order is the public
# listing order.
_PREMIUM_CATALOGUE: Tuple[Tuple[str, str, str, str], ...] = (
    ("dk-ai-6.5-pro", "gemini-2.5-pro", "DK-AI 6.5 PRO",
     "Modelo avançado com alta capacidade de raciocínio e contexto."),
    ("dk-ai-4.7-turbo", "gemini-2.5-flash", "DK-AI 4.7 TURBO",
     "Modelo otimizado para velocidade com boa precisão."),
    ("dk-ai-5.9-lite", "gemini-2.5-flash-lite", "DK-AI 5.9 LITE",
     "Modelo leve e rápido, ideal para respostas ágeis."),
    ("dk-ai-3.1-legacy", "gemini-2.0-flash", "DK-AI 3.1 LEGACY",
     "Modelo legado com bom desempenho em tarefas gerais."),
)
_FREE_ENTRY = (FREE_MODEL_ID, "DK-AI 7.2 FREE",
               "Modelo gratuito baseado em tecnologias de linguagem acessível.")


def _apply_yaml_overrides(spec: ModelSpec, overrides: Dict[str, Any]) -> ModelSpec:
    """Let config.yaml rename/re-describe a model.  Ids, tiers and URLs are fixed."""
    if not isinstance(overrides, dict):
        return spec
    changes: Dict[str, str] = {}
    if overrides.get("name"):
        changes["display_name"] = str(overrides["name"])
    if overrides.get("description"):
        changes["description"] = str(overrides["description"])
    return replace(spec, **changes) if changes else spec


def build_registry(cfg: Config, cfg_yaml: Dict[str, Any] | None = None) -> ProviderRegistry:
    """Construct the registry from defaults + config.yaml display overrides."""
    yaml_models = (cfg_yaml or {}).get("models", {}) if isinstance(cfg_yaml, dict) else {}
    if not isinstance(yaml_models, dict):
        yaml_models = {}

    models: Dict[str, ModelSpec] = {}
    for model_id, upstream, name, description in _PREMIUM_CATALOGUE:
        spec = ModelSpec(
            model_id=model_id,
            display_name=name,
            description=description,
            tier=TIER_PREMIUM,
            endpoint_template=f"{cfg.gemini_base_url}/{upstream}:generateContent?key=",
            upstream_model=upstream,
        )
        models[model_id] = _apply_yaml_overrides(spec, yaml_models.get(model_id))

    free_id, free_name, free_description = _FREE_ENTRY
    free_spec = ModelSpec(
        model_id=free_id,
        display_name=free_name,
        description=free_description,
        tier=TIER_FREE,
        endpoint_template=cfg.workers_api_url,
    )
    models[free_id] = _apply_yaml_overrides(free_spec, yaml_models.get(free_id))

    return ProviderRegistry(models=models, credential=cfg.gemini_api_key)
