# main.py
import uvicorn

from dogs_service.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from dogs_service.adapters.cat_facts_client import CatFactsHttpClient
from dogs_service.adapters.clock import SystemClock
from dogs_service.adapters.dog_repository_inmemory import InMemoryDogRepository
from dogs_service.adapters.retry_tenacity import TenacityRetryAdapter
from dogs_service.adapters.web.fastapi import create_app
from dogs_service.core.config import ResilienceConfig
from dogs_service.core.logging_config import configure_logging
from dogs_service.core.resilience.events import (
    CallMetricsSink,
    CompositeCallEventSink,
    LoggingCallEventSink,
)
from dogs_service.core.services.risky_client import RiskyClient
from dogs_service.core.settings import app_settings, logger


# main lives at the outermost layer (not in core)
# Instantiates all the concrete adapters
# Wires dependencies together
# Starts the application

def build_app():
    # Central logging configuration BEFORE anything logs so uvicorn adopts level/format
    configure_logging(app_settings.DOGS_LOG_LEVEL)
    app_settings.print_settings(logger)

    clock = SystemClock()
    retry_engine = TenacityRetryAdapter(clock=clock)
    call_metrics = CallMetricsSink()
    call_events = CompositeCallEventSink([LoggingCallEventSink(), call_metrics])
    resilience_config = ResilienceConfig.from_app_settings(app_settings)

    dog_repository = InMemoryDogRepository()
    http_client = AioHttpClientAdapter()

    # Factories passed to web adapter keep composition here
    def cat_facts_factory(client):
        return CatFactsHttpClient(
            client,
            str(app_settings.DOGS_CAT_FACTS_URL),
            config=resilience_config,
            timeout=app_settings.DOGS_CAT_FACTS_TIMEOUT,
            call_events=call_events,
            retry=retry_engine,
            clock=clock,
        )

    def risky_client_factory():
        return RiskyClient(call_events=call_events, retry=retry_engine, clock=clock)

    return create_app(
        dog_repository=dog_repository,
        http_client=http_client,
        cat_facts_factory=cat_facts_factory,
        risky_client_factory=risky_client_factory,
        run_startup_report=app_settings.DOGS_RUN_STARTUP_REPORT,
        call_metrics=call_metrics,
    )


def main():
    app = build_app()
    # Let uvicorn inherit existing logging (separate sinks & correlation ids)
    uvicorn.run(
        app,
        host=app_settings.DOGS_API_HOST,
        port=app_settings.DOGS_API_PORT,
        log_config=None,
        log_level=str(app_settings.DOGS_LOG_LEVEL).lower(),
    )


if __name__ == "__main__":
    main()
