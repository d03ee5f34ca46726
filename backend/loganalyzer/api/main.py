"""
FastAPI Main Application
Entry point for the API server
"""

from dotenv import load_dotenv
load_dotenv()

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from loganalyzer.agents import AnalysisGenerator, QueryGenerator
from loganalyzer.catalog import PatternCatalog
from loganalyzer.config import AppConfig, load_config
from loganalyzer.errors import StorageUnavailable, describe
from loganalyzer.integrations.secret_store import FernetSecretStore
from loganalyzer.integrations.settings_service import SettingsService
from loganalyzer.orchestrator import QueryOrchestrator
from loganalyzer.storage import StorageGateway, create_gateway
from loganalyzer.utils.llm_client import ChatCompletionClient
from loganalyzer.utils.logger import get_logger

from .routes import router

logger = get_logger("main")


@dataclass
class AppServices:
    config: AppConfig
    gateway: StorageGateway
    settings: SettingsService
    orchestrator: QueryOrchestrator


def build_services(
    config: AppConfig,
    gateway: Optional[StorageGateway] = None,
    secrets: Optional[FernetSecretStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppServices:
    """Wire the gateway, settings and pipeline components together."""
    gateway = gateway or create_gateway(config)
    settings = SettingsService(gateway, secrets or FernetSecretStore(master_key=config.master_key or None))

    def llm_client(component: str) -> ChatCompletionClient:
        return ChatCompletionClient(
            component=component,
            base_url=config.llm_base_url,
            model=config.llm_model,
            timeout=config.llm_timeout_seconds,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
            transport=transport,
        )

    orchestrator = QueryOrchestrator(
        gateway=gateway,
        catalog=PatternCatalog(gateway),
        query_generator=QueryGenerator(llm_client("query_generator"), gateway.dialect),
        analysis_generator=AnalysisGenerator(llm_client("analysis_generator")),
        credential_provider=settings.get_api_key,
        max_records=config.analysis_max_records,
    )
    return AppServices(config=config, gateway=gateway, settings=settings, orchestrator=orchestrator)


def _init_storage(services: AppServices) -> None:
    """Create the schema and seed sample data; a storage outage is not fatal here."""
    gateway = services.gateway
    try:
        gateway.initialize_schema()
        if services.config.seed_sample_data:
            gateway.seed_defaults()
    except StorageUnavailable as e:
        logger.error("Storage initialization failed; continuing without it", extra={
            "action": "startup", "backend": gateway.backend_name, "extra": describe(e),
        })
        return
    logger.info("Storage initialized", extra={"action": "startup", "backend": gateway.backend_name})


def create_app(config: Optional[AppConfig] = None, services: Optional[AppServices] = None) -> FastAPI:
    """Create and configure FastAPI application"""
    config = config or (services.config if services else load_config())
    services = services or build_services(config)

    app = FastAPI(
        title="Log Analyzer API",
        description="Natural-language log search and analysis",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.on_event("startup")
    async def startup():
        _init_storage(services)

    @app.on_event("shutdown")
    async def shutdown():
        services.gateway.close()

    return app


def run():
    import uvicorn

    uvicorn.run(
        "loganalyzer.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    run()
