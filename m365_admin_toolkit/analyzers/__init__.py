from .base import BaseAnalyzer
from .expiration_analyzer import ExpirationAnalyzer
from .ca_analyzer import ConditionalAccessAnalyzer
from .intune_analyzer import IntuneAnalyzer
from .power_platform_analyzer import PowerPlatformAnalyzer

ALL_ANALYZERS = [
    ExpirationAnalyzer,
    ConditionalAccessAnalyzer,
    IntuneAnalyzer,
    PowerPlatformAnalyzer,
]

__all__ = [
    "BaseAnalyzer",
    "ExpirationAnalyzer",
    "ConditionalAccessAnalyzer",
    "IntuneAnalyzer",
    "PowerPlatformAnalyzer",
    "ALL_ANALYZERS",
]
