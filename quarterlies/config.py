import os
from dataclasses import dataclass
from dotenv import load_dotenv


@dataclass
class AppConfig:
    llm_provider: str
    llm_model_name: str
    llm_api_key: str
    llm_base_url: str
    llm_timeout_seconds: int
    llm_max_retries: int
    http_timeout_seconds: int
    http_max_attempts: int
    retry_base_delay_seconds: float
    inter_company_delay_seconds: float
    default_quarter_count: int
    company_catalog_path: str
    output_dir: str
    debug: bool


def _int_env(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(value, high))


def _float_env(name: str, default: float, low: float, high: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(value, high))


def load_config() -> AppConfig:
    load_dotenv()
    provider = os.getenv("LLM_PROVIDER", "perplexity").strip().lower()
    if provider != "perplexity":
        provider = "perplexity"

    return AppConfig(
        llm_provider=provider,
        llm_model_name=os.getenv("LLM_MODEL_NAME", "sonar-pro"),
        llm_api_key=os.getenv("LLM_API_KEY", "") or os.getenv("PERPLEXITY_API_KEY", ""),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.perplexity.ai"),
        llm_timeout_seconds=_int_env("LLM_TIMEOUT_SECONDS", 90, 1, 600),
        llm_max_retries=_int_env("LLM_MAX_RETRIES", 2, 0, 5),
        http_timeout_seconds=_int_env("HTTP_TIMEOUT_SECONDS", 30, 1, 300),
        http_max_attempts=_int_env("HTTP_MAX_ATTEMPTS", 3, 1, 6),
        retry_base_delay_seconds=_float_env("RETRY_BASE_DELAY_SECONDS", 1.0, 0.0, 30.0),
        inter_company_delay_seconds=_float_env("INTER_COMPANY_DELAY_SECONDS", 2.0, 0.0, 60.0),
        default_quarter_count=_int_env("DEFAULT_QUARTER_COUNT", 8, 1, 40),
        company_catalog_path=os.getenv("COMPANY_CATALOG_PATH", ""),
        output_dir=os.getenv("OUTPUT_DIR", "outputs"),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )
