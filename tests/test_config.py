"""Tests for AppConfig validation and field selection."""

from __future__ import annotations

import json

import pytest

from image_analyzer.config import (
    GATEWAY_API_KEY_ENV,
    OLLAMA_BASE_URL,
    AppConfig,
    ConfigurationError,
    ProviderType,
)
from image_analyzer.fields import OutputFieldSpec, field_names


def test_all_fields_enabled_by_default():
    config = AppConfig()
    assert config.enabled_outputs == field_names(config.output_fields)
    assert config.enabled_outputs[:2] == ["title", "tags"]


def test_enabled_outputs_follow_canonical_order_and_dedupe():
    config = AppConfig(enabled_outputs=["mood", "title", "mood"])
    assert config.enabled_outputs == ["title", "mood"]
    assert [spec.name for spec in config.active_fields()] == ["title", "mood"]


def test_unknown_enabled_output_is_rejected():
    with pytest.raises(ValueError):
        AppConfig(enabled_outputs=["title", "bogus"])


def test_empty_enabled_outputs_is_rejected():
    with pytest.raises(ValueError):
        AppConfig(enabled_outputs=[])


def test_disabling_last_field_is_noop():
    config = AppConfig(enabled_outputs=["title"])

    assert config.toggle_output("title") is True
    assert config.enabled_outputs == ["title"]


def test_toggle_output_adds_in_canonical_order():
    config = AppConfig(enabled_outputs=["mood"])

    assert config.toggle_output("title") is True
    assert config.enabled_outputs == ["title", "mood"]

    assert config.toggle_output("mood") is False
    assert config.enabled_outputs == ["title"]


def test_toggle_unknown_field_raises():
    with pytest.raises(KeyError):
        AppConfig().toggle_output("nope")


def test_enable_all_and_only_output():
    config = AppConfig(enabled_outputs=["mood"])
    config.enable_all_outputs()
    assert len(config.enabled_outputs) == len(config.output_fields)

    config.only_output("title")
    assert config.enabled_outputs == ["title"]


def test_custom_field_set_is_configuration_data():
    config = AppConfig(
        output_fields=[
            OutputFieldSpec(name="caption", label="Caption", description="Alt text"),
            OutputFieldSpec(name="keywords", label="Keywords", description="Words", shape="list"),
        ]
    )
    assert config.enabled_outputs == ["caption", "keywords"]
    assert config.field("keywords").is_list


def test_duplicate_field_names_are_rejected():
    spec = OutputFieldSpec(name="title", label="Title", description="x")
    with pytest.raises(ValueError):
        AppConfig(output_fields=[spec, spec])


def test_instruction_override_falls_back_to_default():
    config = AppConfig(output_descriptions={"title": "  Two words max  ", "mood": " "})
    assert config.instruction_for("title") == "Two words max"
    assert config.instruction_for("mood") == config.field("mood").description


def test_base_url_is_normalised():
    config = AppConfig(provider=ProviderType.CUSTOM, base_url=" http://example.com/v1/ ")
    assert config.base_url == "http://example.com/v1"


def test_base_url_requires_scheme():
    with pytest.raises(ValueError):
        AppConfig(base_url="localhost:11434")


@pytest.mark.parametrize("provider", [ProviderType.OLLAMA, ProviderType.CUSTOM])
def test_local_and_custom_providers_need_base_url(provider):
    config = AppConfig(provider=provider, model="llava")
    with pytest.raises(ConfigurationError):
        config.validate_for_analysis()

    config.base_url = "http://localhost:11434/v1"
    config.validate_for_analysis()


def test_gateway_requires_credential(monkeypatch):
    monkeypatch.delenv(GATEWAY_API_KEY_ENV, raising=False)
    config = AppConfig()
    with pytest.raises(ConfigurationError):
        config.validate_for_analysis()

    monkeypatch.setenv(GATEWAY_API_KEY_ENV, "from-env")
    config.validate_for_analysis()
    assert config.resolved_api_key() == "from-env"


def test_custom_model_sentinel():
    config = AppConfig(model="custom", custom_model=" vendor/model ", api_key="k")
    assert config.effective_model == "vendor/model"

    config.custom_model = None
    with pytest.raises(ConfigurationError):
        config.validate_for_analysis()


def test_switch_provider_resets_defaults():
    config = AppConfig(model="custom", custom_model="x")

    config.switch_provider(ProviderType.OLLAMA)
    assert config.model == "llava"
    assert config.base_url == OLLAMA_BASE_URL
    assert config.custom_model is None

    config.switch_provider(ProviderType.CUSTOM)
    assert config.model == ""
    assert config.base_url is None


def test_load_and_save_round_trip(tmp_path):
    path = tmp_path / "config.yaml"
    original = AppConfig(
        provider=ProviderType.OLLAMA,
        base_url="http://localhost:1234/v1/",
        enabled_outputs=["title", "tags"],
        asset_directory=tmp_path / "assets",
    )
    original.save(path)

    loaded = AppConfig.load(path)
    assert loaded.provider == ProviderType.OLLAMA
    assert loaded.base_url == "http://localhost:1234/v1"
    assert loaded.enabled_outputs == ["title", "tags"]
    assert loaded.asset_directory == tmp_path / "assets"


def test_load_rejects_invalid_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"temperature": 9}), encoding="utf-8")

    with pytest.raises(ValueError):
        AppConfig.load(path)
