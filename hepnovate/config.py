from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field


class Settings(BaseSettings):
    # External OpenAI-compatible inference server (vision + text models)
    llm_base_url: str = "http://127.0.0.1:11424/v1"
    llm_api_key: str = "EMPTY"
    vision_model: str = "meta-llama/Llama-3.2-11B-Vision-Instruct"
    text_model: str = "mistralai/Mistral-7B-Instruct-v0.3"
    symptom_model: str | None = None
    llm_request_timeout_seconds: float = 60.0
    llm_max_retries: int = 0
    llm_retry_backoff_seconds: float = 0.5
    llm_max_concurrent_calls: int = 4
    llm_log_enabled: bool = False
    llm_log_path: str = "logs/llm_calls.jsonl"

    # Per-call generation parameters
    diagnosis_max_tokens: int = 1000
    diagnosis_temperature: float = 0.2
    parsing_max_tokens: int = 1000
    parsing_temperature: float = 0.1
    writeup_max_tokens: int = 2000
    writeup_temperature: float = 0.1
    symptom_max_tokens: int = 150
    symptom_temperature: float = 0.1

    # Deepgram live transcription
    deepgram_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DEEPGRAM_API_KEY",
            "HEPNOVATE_DEEPGRAM_API_KEY",
        ),
    )
    deepgram_listen_url: str = "wss://api.deepgram.com/v1/listen"
    transcription_language: str = "en"
    transcription_punctuate: bool = True
    transcription_smart_format: bool = True
    transcription_model: str = "nova-2"

    # Relay session
    relay_keepalive_seconds: float = 10.0
    relay_connect_timeout_seconds: float = 10.0

    # Current diagnosis record slot (None keeps it in memory)
    record_store_path: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_prefix": "HEPNOVATE_", "env_file": ".env", "extra": "ignore"}

    @property
    def resolved_symptom_model(self) -> str:
        return self.symptom_model or self.text_model


settings = Settings()
