"""Configuration management for procflow."""

from procflow.config.settings import (
    EngineConfig,
    OTelConfig,
    ProcflowSettings,
)

__all__ = [
    "ProcflowSettings",
    "EngineConfig",
    "OTelConfig",
]
