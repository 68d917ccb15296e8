from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from .errors import ConfigError
from .specs import DEFAULT_CONTRACT_ADDRESS, load_specs, market_specs, validate_specs
from .models import SubscriptionSpec


class MonitorSettings(BaseSettings):
    ws_url: str = "wss://ethereum-sepolia.publicnode.com"
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    specs_file: Optional[Path] = None
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    durable_sink: bool = True
    echo: bool = True

    # reconnect budget
    max_retries: int = 10
    base_delay_ms: float = 2000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 1.5
    disconnect_signatures: List[str] = ["socket has been closed"]

    channel_capacity: int = 10_000
    request_timeout_sec: float = 10.0
    shutdown_timeout_sec: float = 5.0
    metrics_port: Optional[int] = None

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    def reconnect_policy(self):
        from .watcher.policy import ReconnectPolicy

        try:
            return ReconnectPolicy(
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                max_delay_ms=self.max_delay_ms,
                multiplier=self.backoff_multiplier,
            )
        except ValueError as e:
            raise ConfigError(f"Invalid reconnect settings: {e}") from e

    def subscription_specs(self) -> List[SubscriptionSpec]:
        if self.specs_file is not None:
            return load_specs(self.specs_file, default_address=self.contract_address)
        return validate_specs(market_specs(self.contract_address))


@lru_cache()
def get_settings() -> MonitorSettings:
    return MonitorSettings()
