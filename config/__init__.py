"""
Configuration Management Module
"""
from .settings import (
    AnalysisSettings,
    DatabaseSettings,
    LLMSettings,
    QueueSettings,
    ScraperSettings,
    SecuritySettings,
    Settings,
    get_llm_settings,
    get_queue_settings,
    get_settings,
)

__all__ = [
    "AnalysisSettings",
    "DatabaseSettings",
    "LLMSettings",
    "QueueSettings",
    "ScraperSettings",
    "SecuritySettings",
    "Settings",
    "get_llm_settings",
    "get_queue_settings",
    "get_settings",
]
