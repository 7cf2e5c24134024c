"""
Run Orchestrator - turns user intent into runs.

Owns the long-lived collaborators (image client, rate governor, credential
store, style catalogue), checks the cooldown before admitting a run, builds
task descriptors and hands back the runner's event stream for the caller to
consume.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, List, Optional, Sequence, Tuple

from ..core.client_config import ClientConfig, get_client_config
from ..core.credential_store import CredentialStore, mask_credential
from ..core.error_classifier import classify
from ..core.rate_governor import RateGovernor
from ..core.style_loader import StyleCatalog, load_styles
from ..models import ClassifiedError, ImageArtifact, RunEvent, RunMode, TaskDescriptor
from ..stages.image_generation import ImageGenerationClient, ImageGenerationError
from .batch_runner import SequentialBatchRunner
from .context import RunContext
from .variation_runner import VariationRunner, clamp_quantity

logger = logging.getLogger(__name__)

RunHandle = Tuple[RunContext, AsyncGenerator[RunEvent, None]]


class CooldownActiveError(Exception):
    """Raised when a run is submitted while the quota cooldown is counting down."""

    def __init__(self, seconds_remaining: int):
        self.seconds_remaining = seconds_remaining
        super().__init__(f"Rate limit reached. Please wait {seconds_remaining}s before starting a new run.")


class OperationFailedError(Exception):
    """A direct (non-run) operation failed; carries the classified error."""

    def __init__(self, classified: ClassifiedError):
        self.classified = classified
        super().__init__(classified.message)


class RunOrchestrator:
    """Entry point for single, batch and variation runs and image enhancement."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        client: Optional[Any] = None,
        governor: Optional[RateGovernor] = None,
        credential_store: Optional[CredentialStore] = None,
        styles: Optional[StyleCatalog] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        pool_size: Optional[int] = None,
    ):
        self.config = config or get_client_config()
        self.sleep = sleep
        self.client = client or ImageGenerationClient(self.config, sleep=sleep)
        self.governor = governor or RateGovernor()
        self.credential_store = credential_store or CredentialStore(self.config.credentials_path)
        self.styles = styles or load_styles()
        self.pool_size = pool_size or self.config.variation_pool_size
        logger.info(
            f"🔧 Run orchestrator initialized with {len(self.styles)} styles, "
            f"variation pool size {self.pool_size}"
        )

    # --- Credentials ---

    @property
    def credential(self) -> Optional[str]:
        return self.credential_store.load()

    def credential_summary(self) -> dict:
        credential = self.credential
        return {
            "has_user_credential": credential is not None,
            "masked": mask_credential(credential),
            "default_available": self.config.default_api_key is not None,
        }

    async def save_credential(self, credential: str) -> None:
        """Validate a key and persist it; raises OperationFailedError when rejected."""
        ok, error = await self.client.validate_credential(credential)
        if not ok:
            raise OperationFailedError(classify(error or "API key is invalid.", True))
        self.credential_store.save(credential)

    def delete_credential(self) -> None:
        self.credential_store.delete()

    # --- Helpers ---

    def _ensure_not_cooling_down(self) -> None:
        if self.governor.in_cooldown:
            raise CooldownActiveError(self.governor.cooldown_remaining)

    def new_context(self, mode: RunMode, total: int = 0) -> RunContext:
        return RunContext(
            total=total,
            client=self.client,
            governor=self.governor,
            credential=self.credential,
            mode=mode,
            sleep=self.sleep,
        )

    def resolve_prompt(self, style_id: Optional[str] = None, custom_prompt: Optional[str] = None) -> str:
        """Custom prompt wins when non-blank; otherwise the style's template."""
        if custom_prompt and custom_prompt.strip():
            return custom_prompt
        style = self.styles.get(style_id)
        if style is None:
            raise ValueError("Please choose a style or enter a custom prompt.")
        return style.prompt

    @staticmethod
    def _present_images(images: Sequence[Optional[ImageArtifact]]) -> List[ImageArtifact]:
        present = [image for image in images if image is not None]
        if not present:
            raise ValueError("Please upload at least one image.")
        return present

    def build_batch_tasks(
        self,
        style_id: str,
        images: Sequence[Optional[ImageArtifact]],
    ) -> List[TaskDescriptor]:
        """
        Group uploaded slots into batch tasks.

        Paired styles take slots (2i, 2i+1) as task i and skip incomplete
        pairs; other styles make one task per filled slot, keyed by slot index.
        """
        style = self.styles.get(style_id)
        if style is None:
            raise ValueError("Please choose a valid style.")

        tasks = []
        group = style.images_per_task
        for task_id in range(len(images) // group):
            slot_images = images[task_id * group:(task_id + 1) * group]
            if all(image is not None for image in slot_images):
                tasks.append(TaskDescriptor(id=task_id, images=tuple(slot_images), prompt=style.prompt))

        if not tasks:
            raise ValueError("Please complete at least one image set to generate.")
        return tasks

    # --- Runs ---

    def submit_single(
        self,
        images: Sequence[Optional[ImageArtifact]],
        style_id: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> RunHandle:
        self._ensure_not_cooling_down()
        prompt = self.resolve_prompt(style_id, custom_prompt)
        task = TaskDescriptor(id=0, images=tuple(self._present_images(images)), prompt=prompt)
        ctx = self.new_context(RunMode.SINGLE, total=1)
        return ctx, SequentialBatchRunner(ctx).run([task])

    def submit_batch(self, style_id: str, images: Sequence[Optional[ImageArtifact]]) -> RunHandle:
        self._ensure_not_cooling_down()
        tasks = self.build_batch_tasks(style_id, images)
        ctx = self.new_context(RunMode.BATCH, total=len(tasks))
        return ctx, SequentialBatchRunner(ctx).run(tasks)

    def submit_variations(
        self,
        images: Sequence[Optional[ImageArtifact]],
        quantity: int,
        style_id: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> RunHandle:
        self._ensure_not_cooling_down()
        prompt = self.resolve_prompt(style_id, custom_prompt)
        present = self._present_images(images)
        ctx = self.new_context(RunMode.VARIATIONS, total=clamp_quantity(quantity))
        return ctx, VariationRunner(ctx, pool_size=self.pool_size).run(present, prompt, quantity)

    async def enhance(self, image: ImageArtifact, quality: str) -> ImageArtifact:
        """Enhance one image; failures are classified and raised as OperationFailedError."""
        self._ensure_not_cooling_down()
        credential = self.credential
        try:
            return await self.client.enhance(
                image, quality, credential, before_dispatch=self.governor.record_request
            )
        except ImageGenerationError as e:
            raise OperationFailedError(classify(e, credential is not None))

    async def text_to_image(self, prompt: str) -> ImageArtifact:
        """Generate an image from a prompt alone; the call counts against the rate window."""
        self._ensure_not_cooling_down()
        if not prompt or not prompt.strip():
            raise ValueError("Please enter a prompt.")
        credential = self.credential
        self.governor.record_request()
        try:
            return await self.client.generate_from_text(prompt, credential)
        except ImageGenerationError as e:
            raise OperationFailedError(classify(e, credential is not None))

    async def prompt_variations(self, base_prompt: str, count: int) -> List[str]:
        credential = self.credential
        try:
            return await self.client.generate_prompt_variations(base_prompt, count, credential)
        except ImageGenerationError as e:
            raise OperationFailedError(classify(e, credential is not None))
