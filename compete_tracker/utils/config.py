"""Configuration management for Compete Tracker."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/compete.db"
    echo: bool = False


class ScrapingConfig(BaseModel):
    """Scraping configuration.

    ``mode`` selects how entity metrics are fetched: ``direct`` drives a local
    Playwright browser, ``agent`` submits a task to the remote browsing agent.
    """

    mode: str = "direct"
    headless: bool = True
    timeout: int = 30
    use_stealth: bool = True
    block_images: bool = False


class AgentConfig(BaseModel):
    """Remote browsing agent configuration."""

    base_url: str = ""
    api_key: str = ""
    agent: str = "gemini"
    mode: str = "text"
    step_limit: int = 60
    poll_interval_seconds: float = 1.0
    # None disables the bound
    max_poll_seconds: Optional[float] = 900.0
    max_poll_attempts: Optional[int] = None
    request_timeout: float = 30.0
    debug: bool = False


class ScheduleConfig(BaseModel):
    """Scheduling configuration."""

    refresh_minutes: int = 5
    max_instances_per_job: int = 1
    misfire_grace_time_seconds: int = 120


class APIConfig(BaseModel):
    """API configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "data/logs/compete.log"


class Config(BaseModel):
    """Main configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scraping: ScrapingConfig = Field(default_factory=ScrapingConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Store URLs tracked at every scheduler start and /cron/update call unless already tracked
    seed_store_urls: List[str] = Field(default_factory=list)


class Settings(BaseSettings):
    """Environment-based settings."""

    # Database
    database_url: str = ""

    # Remote agent
    agent_api_url: str = ""
    agent_api_key: str = ""
    agent_debug: bool = False
    agent_poll_interval_ms: Optional[int] = None

    # Scraping
    scrape_mode: str = ""

    # Logging
    log_level: str = ""

    # API
    api_host: str = ""
    api_port: Optional[int] = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class ConfigManager:
    """Configuration manager for loading and merging config sources."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file
        """
        # Load environment variables
        load_dotenv()

        # Load YAML config
        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "config.yaml"

        self.config_path = config_path
        self.yaml_config = self._load_yaml()

        # Load environment settings
        self.env_settings = Settings()

        # Merge configurations
        self.config = self._merge_config()

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def _merge_config(self) -> Config:
        """Merge YAML config with environment variables."""
        # Start with YAML config
        merged = self.yaml_config.copy()
        env = self.env_settings

        # Override with environment variables where applicable
        if env.database_url:
            merged.setdefault("database", {})["url"] = env.database_url

        agent = merged.setdefault("agent", {})
        if env.agent_api_url:
            agent["base_url"] = env.agent_api_url
        if env.agent_api_key:
            agent["api_key"] = env.agent_api_key
        if env.agent_debug:
            agent["debug"] = True
        if env.agent_poll_interval_ms:
            agent["poll_interval_seconds"] = env.agent_poll_interval_ms / 1000.0

        if env.scrape_mode:
            merged.setdefault("scraping", {})["mode"] = env.scrape_mode

        if env.log_level:
            merged.setdefault("logging", {})["level"] = env.log_level

        if env.api_host:
            merged.setdefault("api", {})["host"] = env.api_host

        if env.api_port:
            merged.setdefault("api", {})["port"] = env.api_port

        return Config(**merged)


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config() -> Config:
    """Get global configuration instance."""
    return get_config_manager().config


def get_settings() -> Settings:
    """Get environment settings."""
    return get_config_manager().env_settings


def get_config_manager() -> ConfigManager:
    """Get configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
