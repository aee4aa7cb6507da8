"""Entry point for burning watermarks into generated media."""

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from .artifact import MediaArtifact
from .config.models import WatermarkConfig
from .errors import CompositeCancelled, DecodeFailure, WatermarkError
from .processors.image import composite_image
from .processors.video import composite_video
from .settings import CompositorSettings

logger = logging.getLogger(__name__)


class WatermarkCompositor:
    """
    Stateless (artifact, config) -> artifact transformation.

    The only thing an instance holds is its immutable settings, so one
    compositor can serve any number of concurrent calls. Calls that decode or
    encode media are blocking; run them off the interactive thread
    (``composite_async`` does that for asyncio callers).
    """

    def __init__(self, settings: CompositorSettings | None = None):
        self.settings = settings or CompositorSettings()

    def composite(
        self,
        artifact: MediaArtifact,
        config: WatermarkConfig | None,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> MediaArtifact:
        """
        Return ``artifact`` with ``config`` burned into its bottom-right corner.

        With no config, or a config at opacity 0, the input artifact itself is
        returned without being decoded.

        Raises:
            DecodeFailure: The source cannot be decoded.
            CompositeFailure: Rendering, compositing or encoding failed.
            CompositeCancelled: ``cancel_event`` was set before the call finished.
        """
        if config is None or config.opacity == 0:
            return artifact

        if artifact.is_image:
            return composite_image(artifact, config, self.settings)
        if artifact.is_video:
            return composite_video(
                artifact, config, self.settings, cancel_event, progress_callback
            )
        raise DecodeFailure(f"Unsupported media type: {artifact.mime_type}")

    async def composite_async(
        self,
        artifact: MediaArtifact,
        config: WatermarkConfig | None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> MediaArtifact:
        """
        Run ``composite`` in a worker thread.

        Cancelling the awaiting task asks the worker to stop at its next
        checkpoint; its output, if any, is discarded.
        """
        cancel_event = threading.Event()
        try:
            return await asyncio.to_thread(
                self.composite, artifact, config, cancel_event, progress_callback
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    def composite_many(
        self,
        artifacts: Iterable[MediaArtifact],
        config: WatermarkConfig | None,
        max_workers: int | None = None,
    ) -> list[MediaArtifact]:
        """
        Composite a batch concurrently. Results keep the input order.

        The first failure is raised once the batch has been submitted.
        """
        artifacts = list(artifacts)
        if config is None or not artifacts:
            return artifacts

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="zwm") as executor:
            return list(executor.map(lambda artifact: self.composite(artifact, config), artifacts))

    def composite_or_original(
        self,
        artifact: MediaArtifact,
        config: WatermarkConfig | None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[MediaArtifact, bool]:
        """
        Composite, falling back to the unwatermarked original on failure.

        Returns:
            The artifact to show and whether a watermark was applied
        """
        try:
            result = self.composite(artifact, config, cancel_event)
        except CompositeCancelled:
            raise
        except WatermarkError as exc:
            logger.warning("Watermark failed, using original %s: %s", artifact.mime_type, exc)
            return artifact, False
        return result, result is not artifact
