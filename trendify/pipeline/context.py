"""
Run context shared by the runners.

Carries everything a run needs that is not the task list itself: the client,
the shared rate governor, the credential in effect, the pacing rule and a
timestamped log. The orchestrator builds one per run.
"""

import asyncio
import datetime
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ..core.constants import INTER_CALL_DELAY_SECONDS
from ..core.credential_store import normalize_credential
from ..core.error_classifier import classify
from ..core.rate_governor import RateGovernor
from ..models import ClassifiedError, RunMode

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State and collaborators for one run."""

    client: Any  # ImageGenerationClient or a test double with the same coroutines
    governor: RateGovernor
    credential: Optional[str] = None
    mode: RunMode = RunMode.BATCH
    total: int = 0
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    inter_call_delay: float = INTER_CALL_DELAY_SECONDS
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    logs: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.credential = normalize_credential(self.credential)

    @property
    def has_user_credential(self) -> bool:
        return self.credential is not None

    def log(self, message: str) -> None:
        """Add a log message with timestamp."""
        timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(f"[{self.run_id[:8]}] {message}")

    async def pace(self) -> None:
        """Wait the mandatory spacing before a dispatch."""
        await self.sleep(self.inter_call_delay)

    def classify(self, error: Any) -> ClassifiedError:
        return classify(error, self.has_user_credential)
