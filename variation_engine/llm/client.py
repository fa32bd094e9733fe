from __future__ import annotations

import base64
import http.client
import json
import logging
import os
import socket
from abc import ABC, abstractmethod
from typing import Any, Sequence
from urllib import error, request

from variation_engine.config.schema import LLMSettings
from variation_engine.core.exceptions import LLMRequestError

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """Provider-neutral interface for one-shot text (and image) completions."""

    provider_name = "unknown"

    def __init__(self, api_key: str, model: str | None = None, settings: LLMSettings | None = None) -> None:
        self.api_key = api_key
        self.settings = settings or LLMSettings(provider=self.provider_name)
        self.model = model or self.settings.model or self.default_model()

    @abstractmethod
    def default_model(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str, images: Sequence[bytes] = ()) -> str:
        raise NotImplementedError

    def _post(self, url: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        logger.debug("Calling %s model %s", self.provider_name, self.model)
        return _post_json(url, body, headers, timeout=self.settings.timeout_seconds)


class OpenAICompletionClient(CompletionClient):
    provider_name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def default_model(self) -> str:
        return os.getenv("OPENAI_MODEL", "gpt-4o")

    def complete(self, system_prompt: str, user_prompt: str, images: Sequence[bytes] = ()) -> str:
        content: list[dict[str, Any]] = [{"type": "text", "text": user_prompt}]
        for image in images:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": _data_url(image), "detail": "high"},
                }
            )
        body = {
            "model": self.model,
            "temperature": 0,
            "max_tokens": self.settings.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content if images else user_prompt},
            ],
        }
        response = self._post(
            self.endpoint,
            body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            return response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMRequestError("OpenAI returned no message content") from exc


class AnthropicCompletionClient(CompletionClient):
    provider_name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"

    def default_model(self) -> str:
        return os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest")

    def complete(self, system_prompt: str, user_prompt: str, images: Sequence[bytes] = ()) -> str:
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/png",
                    "data": base64.b64encode(image).decode("ascii"),
                },
            }
            for image in images
        ]
        content.append({"type": "text", "text": user_prompt})
        body = {
            "model": self.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": 0,
            "system": system_prompt,
            "messages": [
                {"role": "user", "content": content},
            ],
        }
        response = self._post(
            self.endpoint,
            body,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
        )
        blocks = response.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if isinstance(block, dict))
        if not text.strip():
            raise LLMRequestError("Anthropic returned an empty response")
        return text


class GeminiCompletionClient(CompletionClient):
    provider_name = "gemini"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def default_model(self) -> str:
        return os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    def complete(self, system_prompt: str, user_prompt: str, images: Sequence[bytes] = ()) -> str:
        parts: list[dict[str, Any]] = [{"text": user_prompt}]
        for image in images:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": "image/png",
                        "data": base64.b64encode(image).decode("ascii"),
                    }
                }
            )
        body = {
            "system_instruction": {
                "parts": [
                    {"text": system_prompt},
                ]
            },
            "contents": [
                {
                    "role": "user",
                    "parts": parts,
                }
            ],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": self.settings.max_tokens,
            },
        }
        response = self._post(
            self.endpoint_template.format(model=self.model),
            body,
            headers={
                "x-goog-api-key": self.api_key,
                "x-goog-api-client": "variation-engine/0.1.0",
                "Content-Type": "application/json",
            },
        )
        candidates = response.get("candidates", [])
        if not candidates:
            raise LLMRequestError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        text_parts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        content = "".join(text_parts).strip()
        if not content:
            raise LLMRequestError("Gemini returned an empty response")
        return content


_PROVIDERS: dict[str, tuple[type[CompletionClient], str]] = {
    "openai": (OpenAICompletionClient, "OPENAI_API_KEY"),
    "anthropic": (AnthropicCompletionClient, "ANTHROPIC_API_KEY"),
    "gemini": (GeminiCompletionClient, "GEMINI_API_KEY"),
}


def create_completion_client(settings: LLMSettings | None = None) -> CompletionClient:
    provider = os.getenv("LLM_PROVIDER", settings.provider if settings else "openai").lower()
    if provider not in _PROVIDERS:
        raise RuntimeError(f"Unsupported LLM provider: {provider}")
    client_class, key_name = _PROVIDERS[provider]
    api_key = os.getenv(key_name)
    if not api_key:
        raise RuntimeError(f"{key_name} is required when LLM_PROVIDER={provider}")
    if settings is not None and settings.provider != provider:
        settings = settings.model_copy(update={"provider": provider, "model": None})
    return client_class(api_key, settings=settings)


def _data_url(image: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(image).decode("ascii")


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float = 30) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise LLMRequestError(f"LLM request failed with status {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise LLMRequestError(f"LLM request could not be completed: {exc.reason}") from exc
    except (TimeoutError, socket.timeout) as exc:
        raise LLMRequestError(f"LLM request timed out after {timeout}s") from exc
    except (OSError, http.client.HTTPException) as exc:
        raise LLMRequestError(f"LLM connection failed: {type(exc).__name__}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise LLMRequestError("LLM provider returned a body that is not UTF-8") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LLMRequestError("LLM provider returned a non-JSON body") from exc
