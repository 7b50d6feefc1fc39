from typing import Dict, List

from .types import ModelDescriptor, Provider

# =============================================================================
# Static model catalog
# =============================================================================

MODELS: List[ModelDescriptor] = [
    # OpenAI
    ModelDescriptor(
        id="gpt-5.2",
        provider=Provider.OPENAI,
        display_name="GPT-5.2",
        supports_reasoning_effort=True,
        supports_extended_reasoning_tiers=True,
        default_max_output_tokens=16384,
    ),
    ModelDescriptor(id="gpt-4.1", provider=Provider.OPENAI, display_name="GPT-4.1", default_max_output_tokens=16384),
    ModelDescriptor(
        id="gpt-4.1-mini", provider=Provider.OPENAI, display_name="GPT-4.1 Mini", default_max_output_tokens=16384
    ),
    ModelDescriptor(id="gpt-4o", provider=Provider.OPENAI, display_name="GPT-4o", default_max_output_tokens=16384),
    ModelDescriptor(
        id="o4-mini",
        provider=Provider.OPENAI,
        display_name="o4-mini",
        supports_reasoning_effort=True,
        default_max_output_tokens=16384,
    ),
    ModelDescriptor(
        id="o3-mini",
        provider=Provider.OPENAI,
        display_name="o3-mini",
        supports_reasoning_effort=True,
        default_max_output_tokens=16384,
    ),
    # Anthropic
    ModelDescriptor(id="claude-opus-4-5-20251101", provider=Provider.ANTHROPIC, display_name="Claude Opus 4.5"),
    ModelDescriptor(id="claude-sonnet-4-5-20250929", provider=Provider.ANTHROPIC, display_name="Claude Sonnet 4.5"),
    ModelDescriptor(id="claude-haiku-4-5-20251001", provider=Provider.ANTHROPIC, display_name="Claude Haiku 4.5"),
    # Google
    ModelDescriptor(
        id="gemini-3-pro-preview",
        provider=Provider.GOOGLE,
        display_name="Gemini 3 Pro",
        default_max_output_tokens=16384,
    ),
    ModelDescriptor(
        id="gemini-3-flash-preview",
        provider=Provider.GOOGLE,
        display_name="Gemini 3 Flash",
        default_max_output_tokens=8192,
    ),
    ModelDescriptor(
        id="gemini-2.5-pro", provider=Provider.GOOGLE, display_name="Gemini 2.5 Pro", default_max_output_tokens=16384
    ),
    ModelDescriptor(
        id="gemini-2.5-flash", provider=Provider.GOOGLE, display_name="Gemini 2.5 Flash", default_max_output_tokens=8192
    ),
    ModelDescriptor(
        id="gemini-2.5-flash-lite",
        provider=Provider.GOOGLE,
        display_name="Gemini 2.5 Flash-Lite",
        default_max_output_tokens=8192,
    ),
]

_BY_ID: Dict[str, ModelDescriptor] = {m.id: m for m in MODELS}


def get_model(model_id: str) -> ModelDescriptor:
    """
    Look up a catalog model by id.

    Raises:
        KeyError: If the id is not in the catalog.
    """
    try:
        return _BY_ID[model_id]
    except KeyError:
        raise KeyError(f"Unknown model: {model_id}") from None


def models_for(provider: Provider) -> List[ModelDescriptor]:
    """Catalog models of one provider, in display order."""
    return [m for m in MODELS if m.provider == provider]
