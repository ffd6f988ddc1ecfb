"""
Service entry point.

Builds the lifecycle engine and its collaborators from configuration the
first time they are needed, so importing this module stays cheap.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv

from .lifecycle.engine import LifecycleEngine
from .lifecycle.policy import FixedWindowRateLimiter, RateLimiter, UnlimitedRateLimiter
from .plugins.forensics import BedrockForensicsPlugin
from .storage.file_storage import FileStorage
from .storage.report_store import ReportStore
from .utils.bedrock_client import BedrockClient
from .utils.config import Config
from .utils.errors import ErrorContext, ErrorType, HazardEngineError
from .utils.logging import setup_logging

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# Global instances (initialized on first use)
_config: Optional[Config] = None
_engine: Optional[LifecycleEngine] = None


def build_rate_limiter(config: Config) -> RateLimiter:
    if not config.rate_limit.enabled:
        return UnlimitedRateLimiter()
    return FixedWindowRateLimiter(
        window_seconds=config.rate_limit.window_seconds,
        max_requests=config.rate_limit.max_requests
    )


def _initialize_system(config_path: Optional[str] = None) -> None:
    """
    Initialize config, logging, storage, the Bedrock oracle and the engine.

    Called lazily by get_engine(). A missing config file falls back to the
    built-in defaults with an in-memory report store.
    """
    global _config, _engine

    if _engine is not None:
        return

    config_path = config_path or os.getenv("HAZARDWATCH_CONFIG", "config.yaml")

    try:
        if os.path.exists(config_path):
            _config = Config.load(config_path)
        else:
            _config = Config.default()

        setup_logging(_config.logging.level, _config.logging.format, _config.logging.file)
        logger.info(
            f"Initializing hazardwatch: region={_config.aws_region}, "
            f"model={_config.bedrock.model_id}, config={config_path}"
        )

        store = ReportStore(_config.storage.reports_path)
        file_storage = FileStorage(_config.storage.uploads_dir)

        bedrock_client = BedrockClient(
            region=_config.aws_region,
            model_id=_config.bedrock.model_id,
            timeout=_config.bedrock.timeout,
            max_retries=_config.bedrock.max_retries
        )
        oracle = BedrockForensicsPlugin(
            bedrock_client,
            temperature=_config.bedrock.temperature,
            max_tokens=_config.bedrock.max_tokens
        )

        _engine = LifecycleEngine(
            store=store,
            oracle=oracle,
            file_storage=file_storage,
            config=_config.engine,
            rate_limiter=build_rate_limiter(_config)
        )
        logger.info("hazardwatch initialized")

    except HazardEngineError:
        _config = None
        raise
    except Exception as e:
        _config = None
        logger.error(f"Failed to initialize hazardwatch: {str(e)}", exc_info=True)
        raise HazardEngineError(
            ErrorContext(
                error_type=ErrorType.INITIALIZATION_FAILED,
                message=f"Failed to initialize hazardwatch: {str(e)}",
                details={"error": str(e), "config_path": config_path},
                recoverable=False
            )
        ) from e


def get_engine() -> LifecycleEngine:
    """Return the process-wide engine, building it on first use."""
    _initialize_system()
    return _engine


def get_config() -> Config:
    _initialize_system()
    return _config


def reset() -> None:
    """Forget the initialized engine so the next call rebuilds it."""
    global _config, _engine
    _config = None
    _engine = None
