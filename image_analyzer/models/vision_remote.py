"""Vision-language model gateways speaking the OpenAI-compatible chat API."""

from __future__ import annotations

import base64
import json
import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any

import requests
from requests import Response, Session

from ..config import GATEWAY_BASE_URL, OLLAMA_BASE_URL, AppConfig, ConfigurationError, ProviderType
from ..fields import AnalysisResult, OutputFieldSpec, normalize_result
from ..prompts import build_user_prompt
from .base import AnalysisRequest, ModelError, ModelInfo, VisionModel
from .registry import ModelRegistry

logger = logging.getLogger(__name__)

_JSON_OBJECT_PATTERN = re.compile(r"\{.*?\}", re.DOTALL)


def _encode_image(image_bytes: bytes, media_type: str) -> str:
    """Encode raw image bytes as a ``data:`` URL."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


class BaseRemoteVisionModel(VisionModel):
    """Common functionality for OpenAI-compatible chat completion endpoints."""

    def __init__(
        self,
        *,
        identifier: str,
        display_name: str,
        description: str,
        provider: ProviderType,
        config: AppConfig | None,
        tags: Sequence[str],
    ) -> None:
        self._provider = provider
        self._config = config or AppConfig(provider=provider)
        self._info = ModelInfo(
            identifier=identifier,
            display_name=display_name,
            description=description,
            provider=provider,
            tags=tuple(tags),
        )
        self._session: Session | None = None

    def info(self) -> ModelInfo:
        return self._info

    def load(self) -> None:
        self._session = requests.Session()

    # ----- Endpoint resolution ---------------------------------------------

    def base_url(self) -> str:
        raise NotImplementedError

    def model_id(self) -> str:
        return self._config.effective_model

    def api_key(self) -> str | None:
        return self._config.api_key

    # ----- Analysis ----------------------------------------------------------

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        fields = request.all_fields or tuple(self._config.output_fields)
        payload = self._build_payload(request, fields)
        endpoint = f"{self.base_url()}/chat/completions"
        logger.debug("Posting %d bytes to %s (%s)", len(request.image_bytes), endpoint, payload["model"])
        response = self._session_post(endpoint, payload)
        text = self._extract_content(response)
        raw = self._parse_json_response(text)
        result = normalize_result(raw, fields, request.active_fields)
        for spec in fields:
            value = result[spec.name]
            if isinstance(value, list):
                result[spec.name] = _unique(value)
        return result

    def _build_payload(
        self, request: AnalysisRequest, fields: Sequence[OutputFieldSpec]
    ) -> dict[str, Any]:
        return {
            "model": self.model_id(),
            "messages": [
                {"role": "system", "content": request.directive},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_user_prompt(fields)},
                        {
                            "type": "image_url",
                            "image_url": {"url": _encode_image(request.image_bytes, request.media_type)},
                        },
                    ],
                },
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    # ----- Response handling -----------------------------------------------

    def _extract_content(self, response: Response) -> str:
        try:
            data = response.json()
        except ValueError as exc:
            raise ModelError(f"{self._info.display_name} returned a non-JSON response body.") from exc
        if isinstance(data, dict) and "error" in data:
            raise ModelError(f"{self._info.display_name} error: {_error_message(data)}")
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelError(f"{self._info.display_name} returned an unexpected payload.") from exc
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        if not isinstance(content, str) or not content.strip():
            raise ModelError(f"{self._info.display_name} returned an empty answer.")
        return content

    def _parse_json_response(self, text: str) -> dict[str, Any]:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = self._strip_markdown(cleaned)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as err:
            matches = list(_JSON_OBJECT_PATTERN.finditer(cleaned))
            if not matches:
                raise ModelError(
                    f"{self._info.display_name} returned non-JSON output: {cleaned!r}"
                ) from err
            merged: dict[str, Any] = {}
            for match in matches:
                try:
                    fragment = json.loads(match.group(0))
                except json.JSONDecodeError:
                    continue
                if isinstance(fragment, dict):
                    merged.update(fragment)
            if merged:
                return merged
            raise ModelError(f"{self._info.display_name} produced invalid JSON: {cleaned}") from err
        if not isinstance(parsed, dict):
            raise ModelError(f"{self._info.display_name} returned JSON that is not an object.")
        return parsed

    @staticmethod
    def _strip_markdown(text: str) -> str:
        stripped = text.strip()
        if not stripped.startswith("```"):
            return stripped
        parts = stripped.split("```")
        # parts[1] holds the fenced body, possibly led by a language tag.
        if len(parts) < 3:
            return stripped
        candidate = parts[1]
        if "\n" in candidate:
            _, remainder = candidate.split("\n", 1)
            return remainder.strip()
        return parts[-1].strip()

    # ----- HTTP helpers ----------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = self.api_key()
        if key:
            headers["Authorization"] = f"Bearer {key}"
        return headers

    def _session_post(self, url: str, payload: dict[str, Any]) -> Response:
        if self._session is None:
            raise ModelError("HTTP session not initialised.")
        timeout = self._config.timeout
        try:
            response = self._session.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise ModelError(
                f"{self._provider.value} request timed out after {timeout}s."
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ModelError(f"Failed to contact {self._provider.value} endpoint: {exc}") from exc
        if response.status_code >= 400:
            raise ModelError(
                f"{self._provider.value} endpoint returned HTTP {response.status_code}: "
                f"{_response_error(response)}"
            )
        return response

    def list_remote_models(self) -> list[str]:
        """Return model ids advertised by the endpoint's ``/models`` route."""
        if self._session is None:
            self.load()
        try:
            response = self._session.get(
                f"{self.base_url()}/models",
                headers=self._headers(),
                timeout=self._config.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.info("Unable to query %s for models: %s", self._provider.value, exc)
            return []
        if response.status_code >= 400:
            logger.info(
                "Model listing on %s returned HTTP %s", self._provider.value, response.status_code
            )
            return []
        try:
            data = response.json()
        except ValueError:
            return []
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [item["id"] for item in items if isinstance(item, dict) and isinstance(item.get("id"), str)]


def _error_message(data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def _response_error(response: Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and "error" in data:
        return _error_message(data)
    return response.text


class GatewayVisionModel(BaseRemoteVisionModel):
    """Hosted AI gateway that routes ``vendor/model`` ids to their providers."""

    def __init__(self, config: AppConfig | None = None) -> None:
        super().__init__(
            identifier="gateway",
            display_name="AI Gateway",
            description="Hosted gateway for OpenAI, Anthropic and Google vision models.",
            provider=ProviderType.GATEWAY,
            config=config,
            tags=("remote", "gateway", "hosted"),
        )

    def base_url(self) -> str:
        return self._config.base_url or GATEWAY_BASE_URL

    def api_key(self) -> str | None:
        return self._config.resolved_api_key()


class OllamaVisionModel(BaseRemoteVisionModel):
    """Locally hosted Ollama server through its OpenAI-compatible API."""

    def __init__(self, config: AppConfig | None = None) -> None:
        super().__init__(
            identifier="ollama",
            display_name="Ollama (Local)",
            description="Multimodal models such as LLaVA served by a local Ollama instance.",
            provider=ProviderType.OLLAMA,
            config=config,
            tags=("local", "ollama", "openai-compatible"),
        )

    def base_url(self) -> str:
        return self._config.base_url or OLLAMA_BASE_URL

    def model_id(self) -> str:
        model = super().model_id()
        return model[len("ollama/") :] if model.startswith("ollama/") else model


class CustomVisionModel(BaseRemoteVisionModel):
    """Any OpenAI-compatible endpoint supplied by the user."""

    def __init__(self, config: AppConfig | None = None) -> None:
        super().__init__(
            identifier="custom",
            display_name="Custom OpenAI-Compatible",
            description="Arbitrary OpenAI-compatible chat completion endpoint.",
            provider=ProviderType.CUSTOM,
            config=config,
            tags=("remote", "custom", "openai-compatible"),
        )

    def base_url(self) -> str:
        if not self._config.base_url:
            raise ConfigurationError("Base URL is required for custom providers.")
        return self._config.base_url


def _register() -> None:
    ModelRegistry.register(
        ProviderType.GATEWAY, lambda config=None: GatewayVisionModel(config=config)
    )
    ModelRegistry.register(ProviderType.OLLAMA, lambda config=None: OllamaVisionModel(config=config))
    ModelRegistry.register(ProviderType.CUSTOM, lambda config=None: CustomVisionModel(config=config))


_register()
