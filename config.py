"""
Ledger Explorer Configuration
Environment-driven settings for the explorer query backend
"""

import os
from typing import Dict, Any


class Config:
    """Base configuration"""

    # Node used by the transaction relay and the health probe
    NODE_RPC_URL = os.getenv("NODE_RPC_URL", "http://localhost:8545")  # DEV ONLY default
    NODE_RPC_TIMEOUT = int(os.getenv("NODE_RPC_TIMEOUT", "15"))

    # Explorer Configuration
    EXPLORER_PORT = int(os.getenv("EXPLORER_PORT", "3000"))
    EXPLORER_HOST = os.getenv("EXPLORER_HOST", "0.0.0.0")
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"

    # Ledger store
    DB_PATH = os.getenv("EXPLORER_DB_PATH", "./ledger.db")

    # Dashboard feeds (/data)
    DATA_MAX_ENTRIES = int(os.getenv("DATA_MAX_ENTRIES", "10"))
    DATA_MAX_ENTRIES_CAP = int(os.getenv("DATA_MAX_ENTRIES_CAP", "500"))

    # Address grid page size when the client sends no usable length
    ADDR_PAGE_SIZE = int(os.getenv("ADDR_PAGE_SIZE", "10"))

    # Wei per ether, used for grid display
    DENOM_DECIMALS = int(os.getenv("DENOM_DECIMALS", "18"))

    # Cache Configuration
    CACHE_TTL_SHORT = int(os.getenv("CACHE_TTL_SHORT", "60"))  # 1 minute
    CACHE_TTL_LONG = int(os.getenv("CACHE_TTL_LONG", "600"))  # 10 minutes
    REDIS_URL = os.getenv("REDIS_URL", "")

    # API Rate Limiting
    RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

    # CORS Configuration
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }

    @classmethod
    def validate(cls) -> None:
        """Validate configuration"""
        errors = []

        if not cls.DB_PATH:
            errors.append("EXPLORER_DB_PATH is required")

        if cls.EXPLORER_PORT < 1 or cls.EXPLORER_PORT > 65535:
            errors.append("EXPLORER_PORT must be between 1 and 65535")

        if cls.DATA_MAX_ENTRIES < 1:
            errors.append("DATA_MAX_ENTRIES must be positive")

        if cls.DATA_MAX_ENTRIES_CAP < cls.DATA_MAX_ENTRIES:
            errors.append("DATA_MAX_ENTRIES_CAP must not be below DATA_MAX_ENTRIES")

        if cls.ADDR_PAGE_SIZE < 1:
            errors.append("ADDR_PAGE_SIZE must be positive")

        if cls.RATE_LIMIT_PER_MINUTE < 1:
            errors.append("RATE_LIMIT_PER_MINUTE must be positive")

        if errors:
            raise ValueError(f"Configuration validation failed: {', '.join(errors)}")


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    DB_PATH = os.getenv("EXPLORER_DB_PATH", ":memory:")
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    RATE_LIMIT_ENABLED = True
    LOG_LEVEL = "WARNING"


class TestConfig(Config):
    """Test configuration"""

    DB_PATH = ":memory:"
    NODE_RPC_URL = "http://localhost:8545"
    REDIS_URL = ""
    RATE_LIMIT_ENABLED = False
    CACHE_TTL_SHORT = 1
    CACHE_TTL_LONG = 1


# Environment-based configuration selection
ENV_CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "test": TestConfig,
}


def get_config() -> Config:
    """Get configuration based on environment"""
    env = os.getenv("EXPLORER_ENV", "development")
    config_class = ENV_CONFIGS.get(env, DevelopmentConfig)
    config_class.validate()
    return config_class


# Export current configuration
config = get_config()
