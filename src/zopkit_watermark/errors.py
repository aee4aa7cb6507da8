"""Failure kinds raised by the watermark store and compositor.

Callers treat every :class:`WatermarkError` coming out of the compositor as
strictly degrading: the unwatermarked original is shown instead.
"""


class WatermarkError(Exception):
    """Base class for all watermark failures."""


class ConfigNotFound(WatermarkError, KeyError):
    """A watermark id does not resolve to a saved config."""

    def __init__(self, config_id: str):
        super().__init__(config_id)
        self.config_id = config_id

    def __str__(self) -> str:
        return f"Watermark config not found: {self.config_id!r}"


class DecodeFailure(WatermarkError):
    """The source artifact cannot be decoded."""


class CompositeFailure(WatermarkError):
    """Rendering, compositing or re-encoding the watermark failed."""


class CompositeCancelled(CompositeFailure):
    """The caller abandoned a compositing call before it finished."""


class PersistenceFailure(WatermarkError):
    """Reading or writing the persisted watermark collection failed."""
