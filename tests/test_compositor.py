import asyncio
import logging
import threading
import time

import numpy as np
import pytest

from conftest import decode
from zopkit_watermark import (
    CompositeCancelled,
    CompositorSettings,
    DecodeFailure,
    ImageWatermark,
    MediaArtifact,
    TextWatermark,
    WatermarkCompositor,
)
from zopkit_watermark.processors.video import check_cancelled


@pytest.fixture
def compositor():
    return WatermarkCompositor()


def test_default_settings():
    compositor = WatermarkCompositor()

    assert compositor.settings == CompositorSettings()
    assert compositor.settings.margin_ratio == 0.02


def test_unknown_media_type_raises_decode_failure(compositor):
    artifact = MediaArtifact(data=b"%PDF-1.7", mime_type="application/pdf")

    with pytest.raises(DecodeFailure):
        compositor.composite(artifact, TextWatermark(content="Zopkit"))


def test_mime_type_is_normalised():
    artifact = MediaArtifact(data=b"", mime_type="Image/PNG; charset=binary")

    assert artifact.mime_type == "image/png"
    assert artifact.is_image and not artifact.is_video


def test_composite_many_keeps_order(compositor, make_png):
    artifacts = [make_png(100 + 20 * i, 80) for i in range(5)]

    results = compositor.composite_many(artifacts, TextWatermark(content="Zopkit"), max_workers=3)

    assert [decode(r.data).shape[1] for r in results] == [100, 120, 140, 160, 180]
    assert all(r.data != a.data for r, a in zip(results, artifacts))


def test_composite_many_without_watermark_returns_inputs(compositor, make_png):
    artifacts = [make_png(), make_png(64, 64)]

    results = compositor.composite_many(artifacts, None)

    assert all(r is a for r, a in zip(results, artifacts))


def test_composite_many_propagates_failure(compositor, make_png):
    artifacts = [make_png(), MediaArtifact(data=b"broken", mime_type="image/png")]

    with pytest.raises(DecodeFailure):
        compositor.composite_many(artifacts, TextWatermark(content="Zopkit"))


def test_concurrent_calls_match_sequential(compositor, make_png):
    artifact = make_png(256, 256)
    config = TextWatermark(content="Zopkit", opacity=0.7)

    expected = compositor.composite(artifact, config).data
    results = compositor.composite_many([artifact] * 6, config, max_workers=6)

    assert all(result.data == expected for result in results)


def test_composite_async(compositor, make_png):
    artifact = make_png()

    result = asyncio.run(compositor.composite_async(artifact, TextWatermark(content="Zopkit")))

    assert result.mime_type == "image/png"
    assert decode(result.data).shape == decode(artifact.data).shape
    assert result.data != artifact.data


def test_cancelling_composite_async_stops_the_worker(compositor, make_png, monkeypatch):
    started = threading.Event()
    outcome = {}

    def slow_composite(artifact, config, cancel_event=None, progress_callback=None):
        outcome["cancel_event"] = cancel_event
        started.set()
        deadline = time.monotonic() + 10
        try:
            while time.monotonic() < deadline:
                check_cancelled(cancel_event)
                time.sleep(0.01)
        except CompositeCancelled as exc:
            outcome["error"] = exc
            raise
        return artifact

    monkeypatch.setattr(compositor, "composite", slow_composite)

    async def cancel_midway():
        task = asyncio.create_task(compositor.composite_async(make_png(), TextWatermark(content="Zopkit")))
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(cancel_midway())

    # asyncio.run waits for the worker thread before returning
    assert outcome["cancel_event"].is_set()
    assert isinstance(outcome["error"], CompositeCancelled)


def test_composite_or_original_applies_watermark(compositor, make_png):
    artifact = make_png()

    result, applied = compositor.composite_or_original(artifact, TextWatermark(content="Zopkit"))

    assert applied is True
    assert result is not artifact


def test_composite_or_original_without_watermark(compositor, make_png):
    artifact = make_png()

    result, applied = compositor.composite_or_original(artifact, None)

    assert result is artifact
    assert applied is False


def test_composite_or_original_falls_back_on_failure(compositor, make_png, caplog):
    artifact = make_png()
    config = ImageWatermark(content=b"garbage overlay", opacity=1.0)

    with caplog.at_level(logging.WARNING):
        result, applied = compositor.composite_or_original(artifact, config)

    assert result is artifact
    assert applied is False
    assert "Watermark failed" in caplog.text


def test_settings_validation():
    with pytest.raises(ValueError):
        CompositorSettings(margin_ratio=0.5)
    with pytest.raises(ValueError):
        CompositorSettings(jpeg_quality=0)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("ZWM_MARGIN_RATIO", "0.05")
    monkeypatch.setenv("ZWM_JPEG_QUALITY", "80")
    monkeypatch.setenv("ZWM_FONT_PATH", "/fonts/brand.ttf")

    settings = CompositorSettings.from_env()

    assert settings.margin_ratio == 0.05
    assert settings.jpeg_quality == 80
    assert settings.font_path == "/fonts/brand.ttf"


def test_settings_from_env_falls_back_on_invalid_values(monkeypatch, caplog):
    monkeypatch.setenv("ZWM_MARGIN_RATIO", "lots")
    monkeypatch.setenv("ZWM_VIDEO_CRF", "99")

    with caplog.at_level(logging.WARNING):
        settings = CompositorSettings.from_env()

    assert settings.margin_ratio == 0.02
    assert settings.video_crf == 18
    assert "ZWM_MARGIN_RATIO" in caplog.text


def test_missing_font_path_falls_back(make_png):
    compositor = WatermarkCompositor(CompositorSettings(font_path="/nonexistent/font.ttf"))
    artifact = make_png()

    result = compositor.composite(artifact, TextWatermark(content="Zopkit", opacity=1.0))

    assert not np.array_equal(decode(result.data), decode(artifact.data))
