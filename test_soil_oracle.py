"""Tests for the oracle adapter and the JSON entry point."""

import asyncio
import io
import json
import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_ollama import ChatOllama
from soil_oracle_module import OracleSettings, LangChainSoilOracle, build_oracle
import soil_classifier_api
from soil_classifier_api import load_oracle_settings, build_oracle_or_none, handle_request, main

SURVEY = {
    "soilTexture": "Smooth and silky",
    "drainage": "Water stands for a few hours",
    "organicMatter": "Very low",
    "slope": "Gentle",
}


def test_langchain_oracle_returns_stripped_text():
    oracle = LangChainSoilOracle(FakeListChatModel(responses=['  {"soilType":"silt","confidence":0.9}\n']))
    assert asyncio.run(oracle.generate("classify")) == '{"soilType":"silt","confidence":0.9}'


def test_build_oracle_ollama_uses_explicit_settings():
    oracle = build_oracle(OracleSettings(provider="ollama", base_url="http://ollama:11434"))
    assert isinstance(oracle.llm, ChatOllama)
    assert oracle.llm.model == "llama3.2"
    assert oracle.llm.base_url == "http://ollama:11434"
    assert oracle.llm.temperature == 0.1


def test_build_oracle_gemini_requires_key():
    with pytest.raises(ValueError, match="Google API Key"):
        build_oracle(OracleSettings(provider="gemini"))


def test_build_oracle_unknown_provider():
    with pytest.raises(ValueError, match="Unknown oracle provider"):
        build_oracle(OracleSettings(provider="openai"))


def test_load_oracle_settings_from_mapping():
    settings = load_oracle_settings({
        "GOOGLE_API_KEY": "key-123",
        "SOIL_ORACLE_PROVIDER": " Gemini ",
        "SOIL_ORACLE_MODEL": "",
    })
    assert settings.provider == "gemini"
    assert settings.api_key == "key-123"
    assert settings.model is None
    assert settings.resolved_model() == "gemini-2.0-flash"


def test_missing_key_means_heuristic_only():
    assert build_oracle_or_none(load_oracle_settings({})) is None


def test_handle_request_with_fake_chat_model():
    oracle = LangChainSoilOracle(FakeListChatModel(responses=["After weighing it up:\nsilt"]))
    response = handle_request(SURVEY, oracle=oracle)
    assert response["success"] is True
    assert response["soilType"] == "silt"
    assert response["source"] == "oracle"
    assert response["oracle"] == {"category": "silt", "confidence": None, "tier": "keyword"}


def test_handle_request_heuristic_only():
    response = handle_request(SURVEY)
    assert response["success"] is True
    assert response["soilType"] == "silt"
    assert response["source"] == "heuristic"
    assert response["scores"]["silt"] == 6
    assert response["oracle"] is None


def test_handle_request_validation_error():
    response = handle_request({"soilTexture": "gritty"})
    assert response["success"] is False
    assert response["error"] == "Missing required soil information fields."
    assert response["missing_fields"] == ["drainage", "organicMatter", "slope"]


def test_handle_request_non_object_payload():
    response = handle_request(["not", "a", "dict"])
    assert response["success"] is False


def run_script(stdin_text, environ=None):
    stdout = io.StringIO()
    code = main(stdin=io.StringIO(stdin_text), stdout=stdout, environ=environ or {})
    return code, json.loads(stdout.getvalue())


def test_script_success_exit_zero():
    code, response = run_script(json.dumps(SURVEY))
    assert code == 0
    assert response["success"] is True
    assert response["soilType"] == "silt"


def test_script_invalid_json_exit_one():
    code, response = run_script("{not json")
    assert code == 1
    assert response["success"] is False
    assert response["error"].startswith("Invalid JSON input:")


def test_script_validation_failure_exit_one():
    code, response = run_script(json.dumps({"soilTexture": "gritty", "drainage": "", "slope": "flat"}))
    assert code == 1
    assert response["error"] == "Missing required soil information fields."
    assert response["missing_fields"] == ["drainage", "organicMatter"]


def test_script_unexpected_error_envelope(monkeypatch):
    def broken_handler(payload, oracle=None):
        raise RuntimeError("scorer exploded")

    monkeypatch.setattr(soil_classifier_api, "handle_request", broken_handler)
    code, response = run_script(json.dumps(SURVEY))
    assert code == 1
    assert response == {"success": False, "error": "scorer exploded"}
