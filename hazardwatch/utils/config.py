"""Configuration management for the hazard lifecycle engine."""

import os
import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigError


@dataclass
class EngineConfig:
    """
    Admission and consensus rules.

    Radii are straight-line ground distance in meters. The new-hazard
    exclusion radius is exclusive (a hazard exactly at the radius does not
    block), the repair proximity radius is inclusive.
    """
    new_hazard_exclusion_radius_m: float = 20.0
    repair_proximity_radius_m: float = 20.0
    legacy_link_radius_m: float = 30.0
    max_drift_m: float = 50.0
    address_cache_radius_m: float = 50.0
    resolution_threshold: int = 3
    low_risk_threshold: int = 40
    window_open_hour: int = 6
    window_close_hour: int = 18
    oracle_timeout_seconds: float = 60.0
    accept_repairs_on_resolved: bool = False


@dataclass
class BedrockConfig:
    """AWS Bedrock configuration for the forensics oracle."""
    model_id: str = "amazon.nova-pro-v1:0"
    timeout: int = 60
    max_retries: int = 1
    temperature: float = 0.1
    max_tokens: int = 2048


@dataclass
class StorageConfig:
    """Storage paths configuration."""
    reports_path: Optional[str] = "data/reports.jsonl"
    uploads_dir: str = "data/uploads"


@dataclass
class RateLimitConfig:
    """Per-device submission rate limit."""
    enabled: bool = True
    window_seconds: int = 15 * 60
    max_requests: int = 100


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class Config:
    """Main configuration class."""
    aws_region: str = "us-east-1"
    engine: EngineConfig = field(default_factory=EngineConfig)
    bedrock: BedrockConfig = field(default_factory=BedrockConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        """Configuration with built-in defaults and an in-memory report store."""
        config = cls()
        config.storage.reports_path = None
        return config

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from file and environment variables.

        Environment variables override config file values:
        - AWS_REGION
        - BEDROCK_MODEL_ID
        - REPORTS_PATH
        - UPLOADS_DIR
        - ORACLE_TIMEOUT_SECONDS
        - LOG_LEVEL

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            ConfigError: If a rule value is out of range
        """
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        aws_region = os.getenv("AWS_REGION", config_data.get("aws", {}).get("region", "us-east-1"))

        engine_data: Dict[str, Any] = config_data.get("engine", {}) or {}
        engine_config = EngineConfig(**engine_data)
        if os.getenv("ORACLE_TIMEOUT_SECONDS"):
            engine_config.oracle_timeout_seconds = float(os.environ["ORACLE_TIMEOUT_SECONDS"])

        bedrock_data = (config_data.get("aws", {}) or {}).get("bedrock", {}) or {}
        bedrock_config = BedrockConfig(**bedrock_data)
        bedrock_config.model_id = os.getenv("BEDROCK_MODEL_ID", bedrock_config.model_id)

        storage_data = config_data.get("storage", {}) or {}
        storage_config = StorageConfig(
            reports_path=os.getenv("REPORTS_PATH", storage_data.get("reports_path", "data/reports.jsonl")),
            uploads_dir=os.getenv("UPLOADS_DIR", storage_data.get("uploads_dir", "data/uploads"))
        )

        rate_limit_config = RateLimitConfig(**(config_data.get("rate_limit", {}) or {}))

        logging_data = config_data.get("logging", {}) or {}
        logging_config = LoggingConfig(
            level=os.getenv("LOG_LEVEL", logging_data.get("level", "INFO")),
            format=logging_data.get("format", LoggingConfig.format),
            file=logging_data.get("file")
        )

        config = cls(
            aws_region=aws_region,
            engine=engine_config,
            bedrock=bedrock_config,
            storage=storage_config,
            rate_limit=rate_limit_config,
            logging=logging_config,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject rule values that would make the engine incoherent."""
        engine = self.engine
        if engine.resolution_threshold < 1:
            raise ConfigError.invalid("engine.resolution_threshold", "must be at least 1")
        if not 0 <= engine.window_open_hour < engine.window_close_hour <= 24:
            raise ConfigError.invalid(
                "engine.window_open_hour",
                "expected 0 <= window_open_hour < window_close_hour <= 24"
            )
        for name in (
            "new_hazard_exclusion_radius_m",
            "repair_proximity_radius_m",
            "legacy_link_radius_m",
            "max_drift_m",
        ):
            if getattr(engine, name) <= 0:
                raise ConfigError.invalid(f"engine.{name}", "must be positive")
        if engine.oracle_timeout_seconds <= 0:
            raise ConfigError.invalid("engine.oracle_timeout_seconds", "must be positive")
