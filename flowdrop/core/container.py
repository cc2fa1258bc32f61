"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from flowdrop.core.config import Settings
from flowdrop.core.database import Database
from flowdrop.services.pipeline.events import create_event_sink
from flowdrop.services.pipeline.generation import JobGenerationService
from flowdrop.services.pipeline.orchestrator import PipelineOrchestrator
from flowdrop.services.pipeline.sql_repository import SqlJobRepository


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database (call startup() before first use)
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Job/pipeline persistence
    repository = providers.Singleton(
        SqlJobRepository,
        database=database
    )

    # Lifecycle notifications go to the structured log
    event_sink = providers.Singleton(
        create_event_sink,
        enabled=True
    )

    # Services
    generation_service = providers.Factory(
        JobGenerationService,
        repository=repository,
        event_sink=event_sink,
        default_max_retries=settings.provided.default_max_retries
    )

    orchestrator = providers.Singleton(
        PipelineOrchestrator,
        generation_service=generation_service,
        repository=repository,
        event_sink=event_sink,
        settings=settings
    )


# Global container instance
container = Container()
