from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_CONNECTION_CHECK_URLS = [
    "https://www.google.com/generate_204",
    "https://1.1.1.1",
    "https://www.cloudflare.com",
]


class AppConfig(BaseSettings):
    data_dir: str = "./data"
    export_dir: str = ""  # defaults to <data_dir>/exports

    # Capture engine
    buffer_size: int = 1000
    capture_enabled: bool = True
    capture_console: bool = True
    capture_network: bool = True
    capture_errors: bool = True
    terminal_debounce_ms: int = 100

    # Event log store
    max_logs: int = 1000

    # Health monitor, e.g. HEALTH_PROVIDERS='{"ollama": "http://localhost:11434"}'
    health_providers: dict[str, str] = {}
    health_check_interval_secs: float = 30.0
    health_check_timeout_secs: float = 10.0

    # Connection monitor
    connection_monitoring: bool = True
    connection_check_interval_secs: float = 10.0
    connection_timeout_secs: float = 5.0
    connection_latency_threshold_ms: float = 1000.0
    connection_check_urls: list[str] = list(DEFAULT_CONNECTION_CHECK_URLS)

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def export_path(self) -> Path:
        if self.export_dir:
            return Path(self.export_dir)
        return self.data_path / "exports"


config = AppConfig()
