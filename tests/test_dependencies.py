import pytest

from videopipe import dependencies
from videopipe.services.processing_client import BaseProcessingClient


class LoadableClient(BaseProcessingClient):
    async def _process(self, job, on_progress):
        return None


class NotAClient:
    pass


def test_singletons_are_shared():
    assert dependencies.get_event_bus() is dependencies.get_event_bus()
    assert dependencies.get_job_state_machine()._repository is dependencies.get_job_repository()


def test_reset_singletons():
    bus = dependencies.get_event_bus()

    dependencies.reset_singletons()

    assert dependencies.get_event_bus() is not bus


def test_load_processing_client_from_class_path():
    client = dependencies.load_processing_client(f"{__name__}:LoadableClient")

    assert isinstance(client, LoadableClient)


@pytest.mark.parametrize("class_path", ["no_colon_here", ":Missing", "module:"])
def test_load_processing_client_rejects_bad_format(class_path):
    with pytest.raises(ValueError):
        dependencies.load_processing_client(class_path)


def test_load_processing_client_rejects_other_types():
    with pytest.raises(TypeError):
        dependencies.load_processing_client(f"{__name__}:NotAClient")


def test_scheduler_requires_a_client(monkeypatch):
    monkeypatch.setenv("PROCESSING_CLIENT_CLASS", "")

    with pytest.raises(RuntimeError):
        dependencies.get_job_scheduler()


def test_registered_client_is_used(client):
    dependencies.register_processing_client(client)

    assert dependencies.get_processing_client() is client
    assert dependencies.get_job_scheduler()._client is client
