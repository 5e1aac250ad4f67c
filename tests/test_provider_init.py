import pytest

from config import CONFIG  # type: ignore
from llm_cloud import provider  # type: ignore


@pytest.fixture
def restore_provider():
    original = CONFIG["llm"]["provider"]
    yield
    CONFIG["llm"]["provider"] = original


@pytest.mark.parametrize("provider_name, env_var", [("nebius", "NEBIUS_API_KEY"), ("openai", "OPENAI_API_KEY")])
def test_get_client_builds(provider_name, env_var, monkeypatch, restore_provider):
    monkeypatch.setenv(env_var, "test-key")
    CONFIG["llm"]["provider"] = provider_name

    client = provider.get_client()

    assert client is not None


def test_get_client_without_key_raises(monkeypatch, restore_provider):
    for var in ("LLM_API_KEY", "NEBIUS_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    CONFIG["llm"]["provider"] = "nebius"

    with pytest.raises(RuntimeError, match="LLM_API_KEY, NEBIUS_API_KEY"):
        provider.get_client()


def test_unsupported_provider_raises(restore_provider):
    CONFIG["llm"]["provider"] = "mystery"

    with pytest.raises(ValueError):
        provider.get_client()


def test_require_any_env_prefers_first_present(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "")
    monkeypatch.setenv("NEBIUS_API_KEY", "secret")

    assert provider.require_any_env(["LLM_API_KEY", "NEBIUS_API_KEY"]) == ("NEBIUS_API_KEY", "secret")


def test_gateway_client_requires_account_and_gateway_ids(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.delenv("AI_GATEWAY_ACCOUNT_ID", raising=False)
    monkeypatch.setenv("AI_GATEWAY_ID", "gw")

    assert provider.get_gateway_client() is None


def test_gateway_client_targets_gateway_url(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("AI_GATEWAY_ACCOUNT_ID", "acct")
    monkeypatch.setenv("AI_GATEWAY_ID", "gw")

    client = provider.get_gateway_client()

    assert "gateway.ai.cloudflare.com/v1/acct/gw/openai" in str(client.base_url)


def test_build_gateways_degrades_without_credentials(monkeypatch, restore_provider):
    for var in ("LLM_API_KEY", "NEBIUS_API_KEY", "AI_GATEWAY_ACCOUNT_ID", "AI_GATEWAY_ID"):
        monkeypatch.delenv(var, raising=False)
    CONFIG["llm"]["provider"] = "nebius"

    primary, secondary = provider.build_gateways()

    assert primary.available is False
    assert primary.model_name == CONFIG["llm"]["models"]["analysis"]["name"]
    assert secondary is None
