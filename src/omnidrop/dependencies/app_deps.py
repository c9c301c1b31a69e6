from functools import lru_cache
from typing import Optional

from fastapi import Request

from omnidrop.client_registry import ClientRegistry
from omnidrop.config import Settings
from omnidrop.metrics import PrometheusMetrics
from omnidrop.security import TokenManager
from omnidrop.services.file_writer import FileWriter
from omnidrop.services.task_bridge import TaskBridge


@lru_cache()
def get_app_settings() -> Settings:
    """
    Returns the application settings, cached for efficiency.
    """
    return Settings()


# Per-app collaborators live on app.state so tests can build isolated apps.
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client_registry(request: Request) -> ClientRegistry:
    return request.app.state.client_registry


def get_token_manager(request: Request) -> Optional[TokenManager]:
    return request.app.state.token_manager


def get_metrics(request: Request) -> PrometheusMetrics:
    return request.app.state.metrics


def get_task_bridge(request: Request) -> TaskBridge:
    return request.app.state.task_bridge


def get_file_writer(request: Request) -> FileWriter:
    return request.app.state.file_writer
