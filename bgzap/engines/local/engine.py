"""
Local Inference Engine

In-process background removal. The orchestrator only depends on the
LocalInferenceEngine interface; RembgEngine is the production
implementation (rembg + u2net via onnxruntime).
"""

import io
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from PIL import Image

from bgzap.core.config import settings
from bgzap.core.exceptions import LocalEngineError
from bgzap.core.logging import get_logger, with_logging

logger = get_logger(__name__)


@dataclass
class ImageHandle:
    """Decoded image ready for inference."""
    image: Image.Image
    size: Tuple[int, int]
    input_size: int


class LocalInferenceEngine(ABC):
    """Interface for the in-process background removal engine."""

    @abstractmethod
    async def decode_image(self, image_bytes: bytes) -> ImageHandle:
        """Decode raw bytes. Raises LocalEngineError on unreadable input."""

    @abstractmethod
    async def remove_background(self, handle: ImageHandle) -> bytes:
        """Return PNG bytes with the background removed. Raises LocalEngineError."""


class RembgEngine(LocalInferenceEngine):
    """
    Background removal with rembg.

    The rembg session is created on first use so that importing this module
    (and running the remote backend only) never loads onnxruntime. Inference
    is CPU/GPU bound and runs in a worker thread.
    """

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or settings.REMBG_MODEL
        self._session: Any = None

    def _get_session(self):
        if self._session is None:
            # Lazy import for worker optimization
            from rembg import new_session

            logger.info("rembg_session_loading", model=self.model_name)
            self._session = new_session(self.model_name)
        return self._session

    @staticmethod
    def _decode(image_bytes: bytes) -> ImageHandle:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
        return ImageHandle(image=image, size=image.size, input_size=len(image_bytes))

    def _remove(self, handle: ImageHandle) -> bytes:
        from rembg import remove

        output_image = remove(handle.image, session=self._get_session())
        output_buffer = io.BytesIO()
        output_image.save(output_buffer, format="PNG")
        return output_buffer.getvalue()

    @with_logging("decode")
    async def decode_image(self, image_bytes: bytes) -> ImageHandle:
        try:
            return await asyncio.to_thread(self._decode, image_bytes)
        except Exception as e:
            raise LocalEngineError(cause=f"Invalid image data: {e}") from e

    @with_logging("rembg")
    async def remove_background(self, handle: ImageHandle) -> bytes:
        try:
            output_bytes = await asyncio.to_thread(self._remove, handle)
        except MemoryError as e:
            raise LocalEngineError(cause="Out of memory during inference") from e
        except Exception as e:
            raise LocalEngineError(cause=str(e)) from e

        logger.info(
            "rembg_completed",
            input_size=handle.input_size,
            output_size=len(output_bytes),
            original_dimensions=handle.size
        )
        return output_bytes
