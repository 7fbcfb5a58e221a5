# core/similarity_index.py

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, List, Tuple

import numpy as np

from core.database import MediaStore
from core.exceptions import StoreError
from core.models import Fingerprint, FingerprintKind, FingerprintRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    record: FingerprintRecord
    distance: int


def fingerprint_bits(value: str) -> Optional[np.ndarray]:
    """Expand a hex fingerprint into a bit vector, None if it is not hex"""
    try:
        nibbles = np.array([int(c, 16) for c in value], dtype=np.uint8)
    except ValueError:
        return None
    if nibbles.size == 0:
        return None
    # Each nibble occupies the low four bits of its byte
    return np.unpackbits(nibbles.reshape(-1, 1), axis=1)[:, 4:].ravel()


def hamming_distance(hash1: str, hash2: str) -> Optional[int]:
    """
    Number of differing bits between two hex fingerprints.

    Returns None when the fingerprints cannot be compared (different
    lengths, empty or non-hex input).
    """
    if not hash1 or not hash2 or len(hash1) != len(hash2):
        return None
    bits1 = fingerprint_bits(hash1)
    bits2 = fingerprint_bits(hash2)
    if bits1 is None or bits2 is None:
        return None
    return int(np.count_nonzero(bits1 != bits2))


class SimilarityIndex:
    """
    Nearest-neighbour lookup over stored fingerprints.

    Exact fingerprints use an indexed equality lookup. Perceptual
    fingerprints are compared by brute force against every stored
    perceptual record (vectorised with numpy); this class is the seam for
    swapping in a bucketed or tree-based index.
    """

    def __init__(self, store: MediaStore, default_threshold: int = 5,
                 lock_timeout: float = 10.0):
        self.store = store
        self.default_threshold = default_threshold
        self.lock_timeout = lock_timeout
        self._partitions = {kind: threading.Lock() for kind in FingerprintKind}

    @contextmanager
    def partition(self, kind: FingerprintKind):
        """
        Critical section for lookup-then-insert within one fingerprint kind
        """
        lock = self._partitions[kind]
        if not lock.acquire(timeout=self.lock_timeout):
            raise StoreError(f"Timed out waiting for {kind.value} partition lock")
        try:
            yield
        finally:
            lock.release()

    def find_match(self, fingerprint: Fingerprint,
                   threshold: Optional[int] = None) -> Optional[FingerprintRecord]:
        match = self.search(fingerprint, threshold)
        return match.record if match else None

    def search(self, fingerprint: Fingerprint,
               threshold: Optional[int] = None) -> Optional[Match]:
        """Closest stored record within threshold, earliest post on ties"""
        if fingerprint.kind is FingerprintKind.EXACT:
            record = self.store.find_exact(fingerprint.value)
            return Match(record, 0) if record else None

        if threshold is None:
            threshold = self.default_threshold

        query = fingerprint_bits(fingerprint.value)
        if query is None:
            return None

        records, vectors = self._comparable(fingerprint, self.store.get_fingerprints(
            kind=FingerprintKind.PERCEPTUAL
        ))
        if not records:
            return None

        matrix = np.stack(vectors)
        distances = np.count_nonzero(matrix != query, axis=1)

        # Records arrive ordered by posted_at, so argmin keeps the first poster
        best = int(np.argmin(distances))
        distance = int(distances[best])
        if distance > threshold:
            return None

        logger.debug("Perceptual match %s at distance %d among %d records",
                     records[best].id, distance, len(records))
        return Match(records[best], distance)

    def insert(self, record: FingerprintRecord, count_post: bool = False) -> FingerprintRecord:
        """
        Append a record; callers check find_match first. With count_post the
        poster's statistics are updated in the same store transaction.
        """
        if count_post:
            return self.store.record_accepted(record)
        return self.store.add_fingerprint(record)

    @staticmethod
    def _comparable(fingerprint: Fingerprint,
                    records: List[FingerprintRecord]) -> Tuple[List[FingerprintRecord], List[np.ndarray]]:
        """Records of the same bit length as the query, with their bit vectors"""
        length = len(fingerprint.value)
        comparable, vectors = [], []
        for record in records:
            value = record.fingerprint.value
            if len(value) != length:
                continue
            bits = fingerprint_bits(value)
            if bits is None:
                continue
            comparable.append(record)
            vectors.append(bits)
        return comparable, vectors
