"""
=============================================================================
PIPELINE STAGES
=============================================================================

The request-side policies (rate limiting, access control, authentication,
CORS) all answer the same question: may this request go further?

=============================================================================
EXPLICIT OUTCOMES INSTEAD OF WRAPPED HANDLERS
=============================================================================

A classic middleware wraps the next handler and decides whether to call
it. Here each stage instead RETURNS a tagged outcome and the orchestrator
decides what happens next:

    ┌──────────────┐   Continue(headers)    ┌──────────────┐
    │ RateLimiter  │ ─────────────────────► │ AccessControl│ ─► ...
    └──────┬───────┘                        └──────┬───────┘
           │ Terminate(429, Retry-After)           │ Terminate(403)
           ▼                                       ▼
     ┌──────────────────────────────────────────────────────┐
     │ Orchestrator: error presenter → security headers →   │
     │               write → access log                     │
     └──────────────────────────────────────────────────────┘

Every stage can be tested alone with a bare HTTPRequest. No stage ever
builds the final response, so an error can never be written twice or
half-written.

Continue may carry headers for the eventual response (X-RateLimit-*,
Access-Control-Allow-Origin); Terminate carries the status and the
headers the client needs to react (Retry-After, WWW-Authenticate).

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..http.request import HTTPRequest
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


@dataclass
class Continue:
    """Let the request through, adding `headers` to the final response."""

    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class Terminate:
    """
    Stop here and answer with `status`.

    Attributes:
        status: Status to send.
        headers: Headers the client needs (Retry-After, WWW-Authenticate...).
        reason: Short explanation for the server log; never sent.
    """

    status: HTTPStatus
    headers: Dict[str, str] = field(default_factory=dict)
    reason: str = ""


StageOutcome = Union[Continue, Terminate]


class Stage(ABC):
    """
    A request-side policy.

    Subclasses implement check(); it must not raise for ordinary policy
    decisions, only for genuine failures (which become 500).
    """

    @abstractmethod
    def check(self, request: HTTPRequest) -> StageOutcome:
        """
        Decide whether `request` may continue.

        Args:
            request: The parsed request.

        Returns:
            Continue or Terminate.
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class StageChain:
    """
    Runs stages in the order they were added, stopping at the first
    Terminate.

        chain = StageChain().use(RateLimiter(...), AccessControl(...))
        terminated, headers = chain.run(request)
    """

    def __init__(self):
        self._stages: List[Stage] = []

    def add(self, stage: Stage) -> "StageChain":
        self._stages.append(stage)
        logger.debug(f"Added stage: {stage.name}")
        return self

    def use(self, *stages: Stage) -> "StageChain":
        for stage in stages:
            self.add(stage)
        return self

    def run(self, request: HTTPRequest) -> Tuple[Optional[Terminate], Dict[str, str]]:
        """
        Run every stage until one terminates.

        Returns:
            (the Terminate outcome or None, headers collected from the
            stages that ran, including the terminating one)
        """
        headers: Dict[str, str] = {}
        for stage in self._stages:
            outcome = stage.check(request)
            headers.update(outcome.headers)
            if isinstance(outcome, Terminate):
                logger.debug(f"{stage.name} terminated {request.method} {request.path}: {outcome.reason}")
                return outcome, headers
        return None, headers

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)
