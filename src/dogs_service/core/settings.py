from pydantic import HttpUrl
from pydantic_settings import BaseSettings
from rich import print

from dogs_service.adapters.logging_adapter import LoggingAdapter
from dogs_service.core.interfaces.logging import LoggingPort

# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class DogsSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }
    DOGS_LOG_LEVEL: str = "INFO"
    DOGS_API_HOST: str = "0.0.0.0"
    DOGS_API_PORT: int = 8080
    DOGS_CAT_FACTS_URL: HttpUrl = HttpUrl("https://www.catfacts.net/api")
    DOGS_CAT_FACTS_TIMEOUT: float = 10.0  # seconds
    DOGS_CAT_FACTS_MAX_ATTEMPTS: int = 4
    DOGS_CAT_FACTS_CONCURRENCY: int = 10
    # 0 keeps retries immediate; > 0 enables exponential backoff
    DOGS_RETRY_WAIT_INITIAL: float = 0.0
    DOGS_RETRY_WAIT_MAX: float = 1.0
    DOGS_RUN_STARTUP_REPORT: bool = True

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("Dogs service settings:")
        print(self)


app_settings = DogsSettings()

logger: LoggingPort = LoggingAdapter("dogs_service", app_settings.DOGS_LOG_LEVEL)
