# core/duplicate_engine.py

import logging
import time
from typing import Optional

from core.content_hasher import ContentHasher
from core.database import MediaStore
from core.exceptions import StoreError
from core.models import (
    Decision, DuplicateEvent, DuplicateNotification, Fingerprint, FingerprintKind,
    FingerprintRecord, InboundEvent, MediaKind, Outcome, TextMessageRecord, utc
)
from core.similarity_index import SimilarityIndex
from utils.links import DEFAULT_TEMPLATE, message_link
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)


class DuplicateDecisionEngine:
    """
    Decides whether an inbound media event is a re-post.

    Each media event goes hash -> lookup -> record. Lookup and record run
    inside the index partition lock for the fingerprint kind, so two
    simultaneous posts of the same new item cannot both be accepted.
    """

    def __init__(self,
                 store: MediaStore,
                 index: SimilarityIndex,
                 hasher: ContentHasher,
                 image_threshold: int = 5,
                 link_template: str = DEFAULT_TEMPLATE,
                 performance: Optional[PerformanceLogger] = None):
        self.store = store
        self.index = index
        self.hasher = hasher
        self.image_threshold = image_threshold
        self.link_template = link_template
        self.performance = performance or PerformanceLogger()

    @staticmethod
    def classify(event: InboundEvent) -> Optional[MediaKind]:
        """
        Kind used for hashing. Image documents are hashed like images;
        unrecognised kinds come back as None.
        """
        kind = MediaKind.parse(event.media_kind)
        if kind is MediaKind.BINARY and (event.mime_type or '').startswith('image/'):
            return MediaKind.IMAGE
        return kind

    def process(self, event: InboundEvent,
                fingerprint: Optional[Fingerprint] = None) -> Decision:
        """
        Handle one inbound event; raises StoreError on store failures.

        A fingerprint computed ahead of time (on a worker pool) skips hashing.
        """
        kind = self.classify(event)

        if kind is None:
            logger.debug("Ignoring event with unsupported kind %r", event.media_kind)
            return Decision(Outcome.IGNORED)

        if kind is MediaKind.TEXT:
            self.record_text(event)
            return Decision(Outcome.TEXT)

        if not event.buffer:
            logger.debug("Ignoring %s event without content", kind.value)
            return Decision(Outcome.IGNORED)

        if fingerprint is None:
            fingerprint = self.fingerprint(event.buffer, kind)
        return self.decide(event, fingerprint)

    def prepare(self, event: InboundEvent) -> Optional[Fingerprint]:
        """Fingerprint of a media event, None for events that are not hashed"""
        kind = self.classify(event)
        if kind is None or kind is MediaKind.TEXT or not event.buffer:
            return None
        return self.fingerprint(event.buffer, kind)

    def fingerprint(self, buffer: bytes, kind: MediaKind) -> Fingerprint:
        start = time.perf_counter()
        fingerprint = self.hasher.hash(buffer, kind)
        self.performance.log_metric('hash', time.perf_counter() - start,
                                    kind=kind.value, fingerprint_kind=fingerprint.kind.value)
        return fingerprint

    def decide(self, event: InboundEvent, fingerprint: Fingerprint) -> Decision:
        """Lookup and record an already fingerprinted media event"""
        media_kind = MediaKind.parse(event.media_kind)
        threshold = self.image_threshold if fingerprint.kind is FingerprintKind.PERCEPTUAL else 0
        timestamp = utc(event.timestamp)

        start = time.perf_counter()
        try:
            with self.index.partition(fingerprint.kind):
                match = self.index.search(fingerprint, threshold)

                if match is not None:
                    self.store.record_duplicate(DuplicateEvent(
                        offender=event.author,
                        timestamp=timestamp,
                        original_id=match.record.id,
                        media_kind=media_kind,
                        distance=match.distance,
                        conversation_id=event.origin.conversation_id
                    ))
                    decision = Decision(
                        Outcome.DUPLICATE,
                        fingerprint=fingerprint,
                        record=match.record,
                        notification=self._notification(media_kind, match.record, match.distance)
                    )
                else:
                    record = self.index.insert(FingerprintRecord(
                        fingerprint=fingerprint,
                        media_kind=media_kind,
                        poster=event.author,
                        origin=event.origin,
                        posted_at=timestamp
                    ), count_post=True)
                    decision = Decision(Outcome.ACCEPTED, fingerprint=fingerprint, record=record)
        except StoreError:
            logger.exception("Store failure for message %s in %s",
                             event.source_message_id, event.conversation_id)
            raise
        finally:
            self.performance.log_metric('lookup', time.perf_counter() - start,
                                        fingerprint_kind=fingerprint.kind.value)

        if decision.is_duplicate:
            logger.info("Duplicate %s from user %s matches record %s (distance %d)",
                        media_kind.value, event.author.id, match.record.id, match.distance)
        else:
            logger.info("Accepted %s from user %s as record %s",
                        media_kind.value, event.author.id, decision.record.id)
        return decision

    def record_text(self, event: InboundEvent):
        timestamp = utc(event.timestamp)
        try:
            self.store.record_text(TextMessageRecord(
                author=event.author,
                origin=event.origin,
                timestamp=timestamp
            ))
        except StoreError:
            logger.exception("Store failure recording text message %s", event.source_message_id)
            raise

    def _notification(self, media_kind: MediaKind, original: FingerprintRecord,
                      distance: int) -> DuplicateNotification:
        return DuplicateNotification(
            media_kind=media_kind.value,
            original_author=original.poster,
            original_timestamp=original.posted_at,
            original_message_link=message_link(original.origin, self.link_template),
            distance=distance
        )
