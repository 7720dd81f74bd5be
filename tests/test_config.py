import pytest

from quarterlies import config as config_module
from quarterlies.config import load_config


ENV_KEYS = [
    "LLM_PROVIDER",
    "LLM_MODEL_NAME",
    "LLM_API_KEY",
    "PERPLEXITY_API_KEY",
    "LLM_BASE_URL",
    "LLM_TIMEOUT_SECONDS",
    "LLM_MAX_RETRIES",
    "HTTP_TIMEOUT_SECONDS",
    "HTTP_MAX_ATTEMPTS",
    "RETRY_BASE_DELAY_SECONDS",
    "INTER_COMPANY_DELAY_SECONDS",
    "DEFAULT_QUARTER_COUNT",
    "COMPANY_CATALOG_PATH",
    "OUTPUT_DIR",
    "DEBUG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda *args, **kwargs: False)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = load_config()
    assert config.llm_provider == "perplexity"
    assert config.llm_model_name == "sonar-pro"
    assert config.llm_base_url == "https://api.perplexity.ai"
    assert config.llm_timeout_seconds == 90
    assert config.llm_max_retries == 2
    assert config.http_timeout_seconds == 30
    assert config.http_max_attempts == 3
    assert config.retry_base_delay_seconds == 1.0
    assert config.inter_company_delay_seconds == 2.0
    assert config.default_quarter_count == 8
    assert config.output_dir == "outputs"
    assert config.debug is False


def test_api_key_falls_back_to_perplexity_variable(monkeypatch):
    monkeypatch.setenv("PERPLEXITY_API_KEY", "pplx-test")
    assert load_config().llm_api_key == "pplx-test"
    monkeypatch.setenv("LLM_API_KEY", "primary")
    assert load_config().llm_api_key == "primary"


def test_malformed_and_out_of_range_numbers(monkeypatch):
    monkeypatch.setenv("HTTP_MAX_ATTEMPTS", "many")
    monkeypatch.setenv("LLM_MAX_RETRIES", "99")
    monkeypatch.setenv("INTER_COMPANY_DELAY_SECONDS", "-3")
    config = load_config()
    assert config.http_max_attempts == 3
    assert config.llm_max_retries == 5
    assert config.inter_company_delay_seconds == 0.0


def test_only_perplexity_provider_is_supported(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("DEBUG", "true")
    config = load_config()
    assert config.llm_provider == "perplexity"
    assert config.debug is True
