"""Every module in the package must import cleanly."""

import importlib

import pytest

MODULES = [
    "src",
    "src.errors",
    "src.retry",
    "src.config",
    "src.credentials",
    "src.images",
    "src.storage",
    "src.capture",
    "src.network",
    "src.notifications",
    "src.main",
    "src.ai",
    "src.ai.models",
    "src.ai.providers",
    "src.ai.registry",
    "src.ai.orchestrator",
    "src.ai.telemetry",
    "src.ai.history",
    "src.ai.service",
    "src.sync",
    "src.sync.queue",
    "src.sync.events",
    "src.sync.protocols",
    "src.sync.api_client",
    "src.sync.sync_manager",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    module = importlib.import_module(name)

    assert module.__name__ == name


def test_queue_store_keeps_list_method():
    from src.sync.queue import QueueStore

    assert callable(QueueStore.list)
    assert callable(QueueStore.list_by_status)
