import sys
from unittest.mock import MagicMock, patch

import pytest

from bgzap.core.exceptions import LocalEngineError
from bgzap.engines.local.engine import RembgEngine


@pytest.mark.asyncio
async def test_decode_image(png_bytes):
    engine = RembgEngine(model_name="u2net")

    handle = await engine.decode_image(png_bytes)

    assert handle.size == (8, 8)
    assert handle.input_size == len(png_bytes)


@pytest.mark.asyncio
async def test_decode_garbage_raises_local_engine_error():
    engine = RembgEngine(model_name="u2net")

    with pytest.raises(LocalEngineError) as exc_info:
        await engine.decode_image(b"definitely not an image")

    assert exc_info.value.stage == "local"
    assert "Invalid image data" in exc_info.value.details["cause"]


@pytest.mark.asyncio
async def test_remove_background_runs_rembg_with_lazy_session(png_bytes):
    # Arrange
    output_image = MagicMock()
    output_image.save.side_effect = lambda buffer, format: buffer.write(b"PNGDATA")
    fake_rembg = MagicMock()
    fake_rembg.new_session.return_value = "session"
    fake_rembg.remove.return_value = output_image
    engine = RembgEngine(model_name="u2net")

    with patch.dict(sys.modules, {"rembg": fake_rembg}):
        handle = await engine.decode_image(png_bytes)

        # Act
        first = await engine.remove_background(handle)
        await engine.remove_background(handle)

    # Assert
    assert first == b"PNGDATA"
    fake_rembg.new_session.assert_called_once_with("u2net")
    fake_rembg.remove.assert_called_with(handle.image, session="session")


@pytest.mark.asyncio
async def test_remove_background_wraps_failures(png_bytes, monkeypatch):
    engine = RembgEngine(model_name="u2net")
    handle = await engine.decode_image(png_bytes)

    def _boom(h):
        raise RuntimeError("onnxruntime exploded")

    monkeypatch.setattr(engine, "_remove", _boom)

    with pytest.raises(LocalEngineError) as exc_info:
        await engine.remove_background(handle)

    assert exc_info.value.details["cause"] == "onnxruntime exploded"
