from .base import BaseCollector, CollectorResult
from .apple import AppleTokenCollector
from .enrollment import EnrollmentCollector
from .applications import AppCredentialCollector
from .conditional_access import ConditionalAccessCollector
from .intune import IntuneCollector
from .power_platform import PowerPlatformCollector

# Expiration collectors, in run order
EXPIRY_COLLECTORS = [
    AppleTokenCollector,
    EnrollmentCollector,
    AppCredentialCollector,
]

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "AppleTokenCollector",
    "EnrollmentCollector",
    "AppCredentialCollector",
    "ConditionalAccessCollector",
    "IntuneCollector",
    "PowerPlatformCollector",
    "EXPIRY_COLLECTORS",
]
