"""Application-wide configuration models and persistence helpers."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .fields import OutputFieldSpec, default_output_fields, field_names

GATEWAY_BASE_URL = "https://ai-gateway.vercel.sh/v1"
GATEWAY_API_KEY_ENV = "AI_GATEWAY_API_KEY"
OLLAMA_BASE_URL = "http://localhost:11434/v1"
CUSTOM_MODEL_SENTINEL = "custom"

DEFAULT_SYSTEM_MESSAGE = (
    "You are an expert image analyst. Analyze the provided image carefully and extract "
    "structured metadata. Be precise, descriptive, and helpful."
)


class ConfigurationError(ValueError):
    """Raised when settings are incomplete for the requested operation."""


class ProviderType(str, Enum):
    """Supported model provider kinds."""

    GATEWAY = "gateway"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class ToneOption(str, Enum):
    """Writing tone requested from the model."""

    NEUTRAL = "neutral"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    CREATIVE = "creative"
    TECHNICAL = "technical"
    MARKETING = "marketing"
    CUSTOM = "custom"


PROVIDER_DEFAULTS: dict[ProviderType, tuple[str, str | None]] = {
    ProviderType.GATEWAY: ("openai/gpt-4o", None),
    ProviderType.OLLAMA: ("llava", OLLAMA_BASE_URL),
    ProviderType.CUSTOM: ("", None),
}


class AppConfig(BaseModel):
    """Validates and stores runtime settings for the application."""

    provider: ProviderType = Field(
        default=ProviderType.GATEWAY,
        description="Which kind of model endpoint receives the images.",
    )
    model: str = Field(
        default="openai/gpt-4o",
        description="Model identifier, or 'custom' to use custom_model.",
    )
    custom_model: str | None = Field(
        default=None,
        description="Model identifier used when the model selection is 'custom'.",
    )
    base_url: str | None = Field(
        default=None,
        description="Base URL of an OpenAI-compatible endpoint (local and custom providers).",
    )
    api_key: str | None = Field(
        default=None,
        description="Optional bearer credential for the selected provider.",
    )
    system_message: str = Field(
        default=DEFAULT_SYSTEM_MESSAGE,
        description="Base system instruction sent with every image.",
    )
    tone: ToneOption = Field(default=ToneOption.PROFESSIONAL)
    custom_tone: str | None = Field(
        default=None,
        description="Free-text tone instruction used when tone is 'custom'.",
    )
    output_fields: list[OutputFieldSpec] = Field(
        default_factory=default_output_fields,
        description="Canonical, ordered set of fields the model can produce.",
    )
    enabled_outputs: list[str] | None = Field(
        default=None,
        description="Fields requested from the model. Defaults to every canonical field.",
    )
    output_descriptions: dict[str, str] = Field(
        default_factory=dict,
        description="Per-field instruction overrides keyed by field name.",
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Sampling temperature passed to the model.",
    )
    max_tokens: int = Field(
        default=1500,
        ge=64,
        le=16384,
        description="Maximum number of tokens requested from the model.",
    )
    timeout: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Timeout (seconds) for each HTTP call made by the gateways.",
    )
    upload_assets: bool = Field(
        default=True,
        description="Store each analysed image in the asset store.",
    )
    asset_directory: Path | None = Field(
        default=None,
        description="Store assets in this local directory instead of blob storage.",
    )
    asset_prefix: str = Field(
        default="img-base",
        description="Folder prefix for uploaded assets.",
    )
    index_results: bool = Field(
        default=True,
        description="Upsert analysed metadata into the search index.",
    )
    search_index_name: str = Field(default="img-base")

    @model_validator(mode="after")
    def _validate_fields(self) -> AppConfig:
        names = field_names(self.output_fields)
        if not names:
            raise ValueError("At least one output field must be defined.")
        if len(set(names)) != len(names):
            raise ValueError("Output field names must be unique.")

        if self.enabled_outputs is None:
            self.enabled_outputs = list(names)
        unknown = [name for name in self.enabled_outputs if name not in names]
        if unknown:
            raise ValueError(f"Unknown output fields: {', '.join(unknown)}")
        deduped = [name for name in names if name in set(self.enabled_outputs)]
        if not deduped:
            raise ValueError("At least one output field must be enabled.")
        self.enabled_outputs = deduped
        return self

    @model_validator(mode="after")
    def _normalise_endpoint(self) -> AppConfig:
        if self.base_url is not None:
            base = self.base_url.strip().rstrip("/")
            if base and "://" not in base:
                raise ValueError("Base URL must include a scheme such as http://localhost:11434/v1.")
            self.base_url = base or None
        if self.api_key is not None:
            self.api_key = self.api_key.strip() or None
        return self

    # ----- Field selection ---------------------------------------------------

    def field(self, name: str) -> OutputFieldSpec:
        for spec in self.output_fields:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown output field '{name}'")

    def active_fields(self) -> list[OutputFieldSpec]:
        """Return the enabled fields in canonical order."""
        enabled = set(self.enabled_outputs or ())
        return [spec for spec in self.output_fields if spec.name in enabled]

    def is_enabled(self, name: str) -> bool:
        return name in (self.enabled_outputs or ())

    def toggle_output(self, name: str) -> bool:
        """Flip a field on or off. Returns the resulting enabled state.

        Disabling the last enabled field does nothing.
        """
        self.field(name)
        current = list(self.enabled_outputs or ())
        if name in current:
            if len(current) <= 1:
                return True
            current.remove(name)
        else:
            current.append(name)
        self.enabled_outputs = [item for item in field_names(self.output_fields) if item in current]
        return name in self.enabled_outputs

    def enable_all_outputs(self) -> None:
        self.enabled_outputs = field_names(self.output_fields)

    def only_output(self, name: str) -> None:
        self.field(name)
        self.enabled_outputs = [name]

    def instruction_for(self, name: str) -> str:
        override = self.output_descriptions.get(name)
        if override and override.strip():
            return override.strip()
        return self.field(name).description

    # ----- Provider selection ------------------------------------------------

    def switch_provider(self, provider: ProviderType) -> None:
        """Select a provider and reset the model and endpoint to its defaults."""
        model, base_url = PROVIDER_DEFAULTS[provider]
        self.provider = provider
        self.model = model
        self.custom_model = None
        self.base_url = base_url

    @property
    def effective_model(self) -> str:
        if self.model == CUSTOM_MODEL_SENTINEL:
            return (self.custom_model or "").strip()
        return self.model.strip()

    def resolved_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.provider == ProviderType.GATEWAY:
            return os.getenv(GATEWAY_API_KEY_ENV) or None
        return None

    def validate_for_analysis(self) -> None:
        """Reject settings that cannot reach a model before any request is made."""
        if self.provider in (ProviderType.OLLAMA, ProviderType.CUSTOM) and not self.base_url:
            raise ConfigurationError(
                f"Base URL is required for {self.provider.value} providers."
            )
        if not self.effective_model:
            raise ConfigurationError("A model identifier must be configured.")
        if self.provider == ProviderType.GATEWAY and not self.resolved_api_key():
            raise ConfigurationError(
                f"An API key is required for the hosted gateway; set {GATEWAY_API_KEY_ENV}."
            )

    # ----- Persistence -------------------------------------------------------

    def as_dict(self) -> dict[str, Any]:
        """Serialize the configuration to primitive Python types."""
        payload = self.model_dump(mode="json")
        if self.asset_directory is not None:
            payload["asset_directory"] = str(self.asset_directory)
        return payload

    @classmethod
    def load(cls, path: Path) -> AppConfig:
        """Load configuration from a YAML or JSON file."""
        data = _read_config_file(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:  # pragma: no cover - pass through details
            raise ValueError(f"Invalid configuration file at {path}: {exc}") from exc

    def save(self, path: Path) -> None:
        """Persist configuration to a YAML file."""
        _write_config_file(path, self.as_dict())


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _write_config_file(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in {".yaml", ".yml"}:
        yaml_text = yaml.safe_dump(
            data,
            allow_unicode=False,
            sort_keys=False,
        )
        path.write_text(yaml_text, encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
