"""Discover code by structural signature instead of by import path."""

from __future__ import annotations

from .concurrency import CancellationToken, SingleFlight
from .config import DiscoveryConfig, config_from_mapping, load_config
from .engine import DiscoveryEngine, discover, get_discovery_engine, reset_discovery_engines
from .errors import (
    CacheError,
    ConfigError,
    DiscoveryCancelled,
    DiscoveryError,
    LoadError,
    NoMatchError,
    ParseError,
    PluginRegistrationError,
    UnsafeCandidateError,
    ValidationError,
)
from .logging import configure_logging, get_logger
from .models import Candidate, CandidateReport, ForeignTarget, ResolvedTarget, Signature
from .plugins import LanguagePlugin, PluginRegistry
from .signature import normalize_signature

__version__ = "0.1.0"

__all__ = [
    "CacheError",
    "CancellationToken",
    "Candidate",
    "CandidateReport",
    "ConfigError",
    "DiscoveryCancelled",
    "DiscoveryConfig",
    "DiscoveryEngine",
    "DiscoveryError",
    "ForeignTarget",
    "LanguagePlugin",
    "LoadError",
    "NoMatchError",
    "ParseError",
    "PluginRegistrationError",
    "PluginRegistry",
    "ResolvedTarget",
    "Signature",
    "SingleFlight",
    "UnsafeCandidateError",
    "ValidationError",
    "config_from_mapping",
    "configure_logging",
    "discover",
    "get_discovery_engine",
    "get_logger",
    "load_config",
    "normalize_signature",
    "reset_discovery_engines",
]
