"""
Language-model estimators for ingredient nutrition.

Two interchangeable providers sit behind the same call:

    estimator.complete(prompt, max_tokens, temperature=0) -> str

- ChatCompletionEstimator: any OpenAI SDK client. Groq is reached through
  its OpenAI-compatible endpoint; Azure OpenAI through AzureOpenAI.
- GeminiEstimator: Google Gemini through the google-genai SDK.

The estimators know nothing about ingredients; prompt construction and
response parsing belong to bocadi.nutrition_cache.
"""

import logging

from openai import OpenAI, AzureOpenAI

from . import config
from .errors import EstimatorNotConfigured

logger = logging.getLogger(__name__)


class ChatCompletionEstimator:
    """Completion over the OpenAI chat API (Groq, OpenAI or Azure)."""

    def __init__(self, client, model):
        self.client = client
        self.model = model

    def complete(self, prompt: str, max_tokens: int, temperature: float = 0) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


class GeminiEstimator:
    """Completion over Google Gemini."""

    def __init__(self, client, model):
        self.client = client
        self.model = model

    def complete(self, prompt: str, max_tokens: int, temperature: float = 0) -> str:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )
        return (response.text or "").strip()


def _groq_estimator():
    api_key = config.get_setting("GROQ_API_KEY")
    if not api_key:
        raise EstimatorNotConfigured("GROQ_API_KEY no configurada")
    client = OpenAI(
        api_key=api_key,
        base_url=config.get_setting("GROQ_BASE_URL", default=config.DEFAULT_GROQ_BASE_URL),
    )
    return ChatCompletionEstimator(
        client, config.get_setting("GROQ_MODEL", default=config.DEFAULT_GROQ_MODEL)
    )


def _azure_estimator():
    api_key = config.get_setting("AZURE_OPENAI_API_KEY")
    endpoint = config.get_setting("AZURE_OPENAI_API_BASE")
    if not api_key or not endpoint:
        raise EstimatorNotConfigured("AZURE_OPENAI_API_KEY / AZURE_OPENAI_API_BASE no configuradas")
    client = AzureOpenAI(
        api_version=config.get_setting(
            "AZURE_OPENAI_API_VERSION", default=config.DEFAULT_AZURE_API_VERSION
        ),
        azure_endpoint=endpoint,
        api_key=api_key,
    )
    deployment = config.get_setting("AZURE_OPENAI_DEPLOYMENT")
    if not deployment:
        raise EstimatorNotConfigured("AZURE_OPENAI_DEPLOYMENT no configurado")
    return ChatCompletionEstimator(client, deployment)


def _gemini_estimator():
    api_key = config.get_setting("GEMINI_API_KEY", "GOOGLE_API_KEY")
    if not api_key:
        raise EstimatorNotConfigured("GEMINI_API_KEY no configurada")
    from google import genai

    client = genai.Client(api_key=api_key)
    return GeminiEstimator(
        client, config.get_setting("GEMINI_MODEL", default=config.DEFAULT_GEMINI_MODEL)
    )


PROVIDERS = {
    "groq": _groq_estimator,
    "azure": _azure_estimator,
    "gemini": _gemini_estimator,
}


def get_estimator(provider=None):
    """Build the estimator for `provider` (defaults to LLM_PROVIDER)."""
    provider = (provider or config.llm_provider()).lower()
    factory = PROVIDERS.get(provider)
    if factory is None:
        raise EstimatorNotConfigured(f"Unknown LLM provider: {provider}")
    estimator = factory()
    logger.info(f"✅ Nutrition estimator initialized: {provider} ({estimator.model})")
    return estimator
