"""Dependency injection for FastAPI routes."""

from typing import Annotated

from fastapi import Depends, Request

from siteprompt.config import Settings
from siteprompt.services.credentials import CredentialPool
from siteprompt.services.generation import Generator
from siteprompt.services.orchestrator import CrawlOrchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_credential_pool(request: Request) -> CredentialPool:
    return request.app.state.credential_pool


def get_generator(request: Request) -> Generator:
    return request.app.state.generator


def get_orchestrator(settings: Annotated[Settings, Depends(get_app_settings)]) -> CrawlOrchestrator:
    return CrawlOrchestrator(settings)


# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Pool = Annotated[CredentialPool, Depends(get_credential_pool)]
TextGenerator = Annotated[Generator, Depends(get_generator)]
Orchestrator = Annotated[CrawlOrchestrator, Depends(get_orchestrator)]
