"""
Request and response policies.

Request side (stages, run in this order by the pipeline):
    RateLimiter → AccessControl → BasicAuthenticator → CORSPolicy

Response side:
    Compressor, SecurityHeaders

Observability:
    AccessLogger
"""

from .base import Continue, Terminate, Stage, StageChain
from .rate_limit import RateLimiter, TokenBucket
from .access import AccessControl
from .auth import BasicAuthenticator, parse_basic_credentials
from .cors import CORSPolicy
from .compression import Compressor
from .security_headers import SecurityHeaders
from .logging import AccessLogger, RequestLog

__all__ = [
    "Continue",
    "Terminate",
    "Stage",
    "StageChain",
    "RateLimiter",
    "TokenBucket",
    "AccessControl",
    "BasicAuthenticator",
    "parse_basic_credentials",
    "CORSPolicy",
    "Compressor",
    "SecurityHeaders",
    "AccessLogger",
    "RequestLog",
]
