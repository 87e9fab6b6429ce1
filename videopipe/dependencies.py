import importlib
from functools import lru_cache
from typing import Any, Dict

from .config import Settings
from .core.events.event_bus import DomainEventBus
from .core.job_repository import JobRepository
from .core.job_state_machine import JobStateMachine
from .services.disposition_handler import DispositionHandler
from .services.job_scheduler import JobScheduler
from .services.processing_client import BaseProcessingClient

# Global singleton instances
_singletons: Dict[str, Any] = {}


@lru_cache
def get_settings() -> Settings:
    """Hent Settings singleton instance."""
    return Settings()


def get_event_bus() -> DomainEventBus:
    if "event_bus" not in _singletons:
        _singletons["event_bus"] = DomainEventBus()
    return _singletons["event_bus"]


def get_job_repository() -> JobRepository:
    if "job_repository" not in _singletons:
        _singletons["job_repository"] = JobRepository()
    return _singletons["job_repository"]


def get_job_state_machine() -> JobStateMachine:
    if "job_state_machine" not in _singletons:
        _singletons["job_state_machine"] = JobStateMachine(
            job_repository=get_job_repository(),
            event_bus=get_event_bus(),
        )
    return _singletons["job_state_machine"]


def get_disposition_handler() -> DispositionHandler:
    if "disposition_handler" not in _singletons:
        _singletons["disposition_handler"] = DispositionHandler(get_settings())
    return _singletons["disposition_handler"]


def register_processing_client(client: BaseProcessingClient) -> None:
    """Use `client` instead of the class named in settings."""
    _singletons["processing_client"] = client


def load_processing_client(class_path: str) -> BaseProcessingClient:
    """Instantiate a client from a "package.module:ClassName" string."""
    module_name, _, class_name = class_path.partition(":")
    if not module_name or not class_name:
        raise ValueError(
            f"processing_client_class must look like 'package.module:ClassName', got {class_path!r}"
        )
    client_class = getattr(importlib.import_module(module_name), class_name)
    client = client_class()
    if not isinstance(client, BaseProcessingClient):
        raise TypeError(f"{class_path} is not a BaseProcessingClient")
    return client


def get_processing_client() -> BaseProcessingClient:
    if "processing_client" not in _singletons:
        class_path = get_settings().processing_client_class
        if not class_path:
            raise RuntimeError(
                "No processing client configured - set PROCESSING_CLIENT_CLASS "
                "or call register_processing_client()"
            )
        _singletons["processing_client"] = load_processing_client(class_path)
    return _singletons["processing_client"]


def get_job_scheduler() -> JobScheduler:
    if "job_scheduler" not in _singletons:
        _singletons["job_scheduler"] = JobScheduler(
            settings=get_settings(),
            job_repository=get_job_repository(),
            event_bus=get_event_bus(),
            state_machine=get_job_state_machine(),
            processing_client=get_processing_client(),
            disposition_handler=get_disposition_handler(),
        )
    return _singletons["job_scheduler"]


def reset_singletons() -> None:
    _singletons.clear()
    get_settings.cache_clear()
