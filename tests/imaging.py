# tests/imaging.py

from datetime import datetime, timezone

import cv2
import numpy as np

BASE_TIME = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def block_image(seed: int, size: int = 512, grid: int = 16) -> np.ndarray:
    """Random colour blocks, coarse enough to survive re-encoding"""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, (grid, grid, 3), dtype=np.uint8)
    return cv2.resize(blocks, (size, size), interpolation=cv2.INTER_NEAREST)


def encode(img: np.ndarray, ext: str = '.png', quality: int = None) -> bytes:
    params = [cv2.IMWRITE_JPEG_QUALITY, quality] if quality is not None else []
    ok, buffer = cv2.imencode(ext, img, params)
    assert ok
    return buffer.tobytes()
