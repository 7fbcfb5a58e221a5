# core/content_hasher.py

import hashlib
import io
import logging
from pathlib import Path

import cv2
import imagehash
import numpy as np
from PIL import Image

from config import HashingConfig
from core.models import Fingerprint, FingerprintKind, MediaKind

logger = logging.getLogger(__name__)

HASH_FUNCTIONS = {
    'phash': imagehash.phash,
    'dhash': imagehash.dhash,
    'average': imagehash.average_hash,
    'whash': imagehash.whash,
}


class ContentHasher:
    """
    Turns raw media buffers into comparable fingerprints.

    Images get a perceptual hash (hash_size x hash_size bits); everything
    else, and any image that cannot be decoded, gets a SHA-256 digest that
    only matches byte-identical content.
    """

    def __init__(self, config: HashingConfig = None):
        self.config = config or HashingConfig()
        if self.config.algorithm not in HASH_FUNCTIONS:
            raise ValueError(f"Unknown hash algorithm: {self.config.algorithm}")
        self._hash_func = HASH_FUNCTIONS[self.config.algorithm]

        # Set PIL limits to prevent memory issues
        Image.MAX_IMAGE_PIXELS = self.config.max_image_pixels

    def hash(self, buffer: bytes, kind: MediaKind) -> Fingerprint:
        """Fingerprint a buffer; never raises for bad image data"""
        if kind is MediaKind.IMAGE:
            if len(buffer) > self.config.max_image_bytes:
                logger.warning("Image of %d bytes exceeds limit, using digest", len(buffer))
                return self.digest(buffer)
            try:
                return self.perceptual(buffer)
            except Exception as e:
                logger.warning("Perceptual hashing failed, using digest: %s", e)
                return self.digest(buffer)

        return self.digest(buffer)

    def hash_file(self, path: str, kind: MediaKind) -> Fingerprint:
        return self.hash(Path(path).read_bytes(), kind)

    def perceptual(self, buffer: bytes) -> Fingerprint:
        """Perceptual hash of an encoded image; raises if it cannot be decoded"""
        with self._decode(buffer) as img:
            gray = img.convert('L')
            try:
                # Resize large images to speed up processing
                size = self.config.thumbnail_size
                if gray.size[0] > size or gray.size[1] > size:
                    gray.thumbnail((size, size), Image.Resampling.LANCZOS)

                value = self._hash_func(gray, hash_size=self.config.hash_size)
            finally:
                gray.close()

        return Fingerprint(str(value), FingerprintKind.PERCEPTUAL)

    @staticmethod
    def digest(buffer: bytes) -> Fingerprint:
        return Fingerprint(hashlib.sha256(buffer).hexdigest(), FingerprintKind.EXACT)

    def _decode(self, buffer: bytes) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(buffer))
            try:
                img.load()
            except Exception:
                img.close()
                raise
            return img
        except (OSError, ValueError, SyntaxError) as e:
            # Formats Pillow cannot identify may still decode with OpenCV
            array = cv2.imdecode(np.frombuffer(buffer, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
            if array is None:
                raise ValueError(f"Undecodable image buffer: {e}") from e
            if array.shape[0] * array.shape[1] > self.config.max_image_pixels:
                raise Image.DecompressionBombError(
                    f"Image size {array.shape[1]}x{array.shape[0]} exceeds pixel limit"
                )
            return Image.fromarray(array)
