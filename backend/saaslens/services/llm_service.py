"""LLM service: provider settings and plain text completion over httpx.

Every provider is reduced to one call: prompt in, response text out, or a
ProviderError.  Callers that need structure parse the text themselves.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from .. import config
from ..models import Setting
from ..schemas import ExtractedSubscription
from .retry import LLM_RETRY, ProviderError, ProviderNotConfiguredError, with_retry
from .subscription_extraction import Extractor, build_prompt, parse_extraction_response

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "openai", "ollama")
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_BASE = "https://api.openai.com/v1"
MAX_OUTPUT_TOKENS = 1024


# ── Settings helpers ──────────────────────────────────────────────────────────

def get_setting(db: Session, key: str, default: str = "") -> str:
    row = db.query(Setting).filter(Setting.key == key).first()
    return row.value if (row and row.value is not None) else default


def set_setting(db: Session, key: str, value: str) -> None:
    row = db.query(Setting).filter(Setting.key == key).first()
    if row:
        row.value = value
    else:
        db.add(Setting(key=key, value=value))
    db.commit()


def _default_model(provider: str) -> str:
    return {
        "gemini": config.GEMINI_MODEL,
        "openai": config.OPENAI_MODEL,
        "ollama": config.OLLAMA_MODEL,
    }.get(provider, config.GEMINI_MODEL)


def get_llm_settings(db: Optional[Session] = None) -> dict:
    """Provider and model, stored settings first, environment defaults second."""
    provider = config.LLM_PROVIDER
    if db is not None:
        provider = get_setting(db, "llm_provider", provider)
    if provider not in PROVIDERS:
        provider = "gemini"
    model = _default_model(provider)
    if db is not None:
        model = get_setting(db, "llm_model", "") or model
    return {"provider": provider, "model": model}


# ── Provider calls ────────────────────────────────────────────────────────────

def _raise_for_status(r: httpx.Response, provider: str) -> None:
    if r.is_success:
        return
    logger.error("%s API error %s: %s", provider, r.status_code, r.text[:300])
    raise ProviderError(f"{provider} API error: {r.status_code} {r.reason_phrase}", status_code=r.status_code)


def _call_gemini(client: httpx.Client, prompt: str, model: str, temperature: float) -> str:
    if not config.GEMINI_API_KEY:
        raise ProviderNotConfiguredError("GEMINI_API_KEY not configured")
    r = client.post(
        f"{GEMINI_BASE}/models/{model}:generateContent",
        params={"key": config.GEMINI_API_KEY},
        json={
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": MAX_OUTPUT_TOKENS},
        },
    )
    _raise_for_status(r, "gemini")
    candidates = r.json().get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or [{}]
    return parts[0].get("text", "")


def _call_openai(client: httpx.Client, prompt: str, model: str, temperature: float) -> str:
    if not config.OPENAI_API_KEY:
        raise ProviderNotConfiguredError("OPENAI_API_KEY not configured")
    r = client.post(
        f"{OPENAI_BASE}/chat/completions",
        headers={"Authorization": f"Bearer {config.OPENAI_API_KEY}"},
        json={
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": MAX_OUTPUT_TOKENS,
        },
    )
    _raise_for_status(r, "openai")
    choices = r.json().get("choices") or [{}]
    return (choices[0].get("message") or {}).get("content", "")


def _call_ollama(client: httpx.Client, prompt: str, model: str, temperature: float) -> str:
    r = client.post(
        f"{config.OLLAMA_BASE}/api/chat",
        json={
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "options": {"temperature": temperature},
            "stream": False,
        },
    )
    _raise_for_status(r, "ollama")
    return r.json().get("message", {}).get("content", "")


_CALLS = {
    "gemini": _call_gemini,
    "openai": _call_openai,
    "ollama": _call_ollama,
}


def complete(
    prompt: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    temperature: float = 0.1,
    client: Optional[httpx.Client] = None,
) -> str:
    """Send *prompt* to the configured provider and return the response text.

    Transient failures are retried with backoff; anything else surfaces as
    ProviderError (transport errors are wrapped too).
    """
    settings = get_llm_settings()
    provider = provider or settings["provider"]
    model = model or _default_model(provider)
    call = _CALLS.get(provider)
    if call is None:
        raise ProviderNotConfiguredError(f"Unknown LLM provider {provider!r}")

    def _once() -> str:
        if client is not None:
            return call(client, prompt, model, temperature)
        with httpx.Client(timeout=config.LLM_TIMEOUT_SECONDS) as cl:
            return call(cl, prompt, model, temperature)

    logger.debug("Calling %s (%s), prompt length %d", provider, model, len(prompt))
    try:
        text = with_retry(_once, LLM_RETRY)
    except httpx.HTTPError as exc:
        raise ProviderError(f"{provider} request failed: {exc}") from exc
    logger.debug("%s response length %d", provider, len(text))
    return text


# ── Structured extraction ─────────────────────────────────────────────────────

def make_extractor(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Extractor:
    """Return an ``extract(subject, body, sender)`` callable backed by the LLM.

    It raises ProviderError or ExtractionParseError on failure, which the
    email pipeline answers with the regex fallback.
    """

    def extract(subject: str, body: str, sender: str) -> Optional[ExtractedSubscription]:
        raw = complete(build_prompt(subject, body, sender), provider=provider, model=model, client=client)
        return parse_extraction_response(raw)

    return extract
