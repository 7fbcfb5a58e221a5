# core/listener.py

import base64
import binascii
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Dict, Optional, Tuple, Union

from tqdm import tqdm

from core.duplicate_engine import DuplicateDecisionEngine
from core.exceptions import RepostGuardError, StoreError, UnsupportedEventError
from core.models import Decision, Fingerprint, InboundEvent, Outcome, Poster, utc

logger = logging.getLogger(__name__)


def parse_event(payload: Dict) -> InboundEvent:
    """
    Build an InboundEvent from a JSON payload.

    Media content comes either base64 encoded under ``buffer`` or as a
    local file under ``path``.
    """
    try:
        author = payload['author']
        if isinstance(author, dict):
            poster = Poster(int(author['id']), author.get('display_name'))
        else:
            poster = Poster(int(author))

        buffer = None
        if payload.get('buffer') is not None:
            buffer = base64.b64decode(payload['buffer'], validate=True)
        elif payload.get('path'):
            buffer = Path(payload['path']).read_bytes()

        timestamp = payload.get('timestamp')
        if isinstance(timestamp, (int, float)):
            timestamp = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        elif timestamp:
            timestamp = datetime.fromisoformat(timestamp)

        return InboundEvent(
            media_kind=payload['media_kind'],
            author=poster,
            conversation_id=str(payload['conversation_id']),
            source_message_id=str(payload['source_message_id']),
            timestamp=utc(timestamp),
            buffer=buffer,
            mime_type=payload.get('mime_type')
        )
    except (KeyError, TypeError, ValueError, binascii.Error, OSError) as e:
        raise UnsupportedEventError(f"Malformed event: {e}") from e


def parse_reaction(payload: Dict) -> Tuple[str, str, Union[int, List[Dict]]]:
    """
    Unpack a reaction count update.

    ``reactions`` holds either the total or the platform's list of reaction
    objects; ``total_reactions`` is accepted as a plain total.
    """
    try:
        conversation_id = str(payload['conversation_id'])
        message_id = str(payload['source_message_id'])
        reactions = payload['reactions'] if 'reactions' in payload else payload['total_reactions']
    except KeyError as e:
        raise UnsupportedEventError(f"Malformed reaction update: missing {e}") from e

    if isinstance(reactions, bool) or not isinstance(reactions, (int, list)):
        raise UnsupportedEventError(f"Malformed reaction update: {reactions!r}")
    return conversation_id, message_id, reactions


class EventListener:
    """
    Feeds inbound events to the decision engine one at a time.

    Every failure is contained at the event boundary: the failing event
    yields a FAILED decision and the stream carries on.
    """

    def __init__(self, engine: DuplicateDecisionEngine, n_workers: int = 1):
        self.engine = engine
        self.n_workers = max(1, n_workers)
        self.processed = 0
        self.failed = 0
        self._lock = threading.Lock()

    def handle(self, event: InboundEvent, fingerprint: Optional[Fingerprint] = None) -> Decision:
        try:
            decision = self.engine.process(event, fingerprint)
        except RepostGuardError as e:
            logger.error("Skipping message %s: %s", event.source_message_id, e)
            decision = Decision(Outcome.FAILED, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error processing message %s", event.source_message_id)
            decision = Decision(Outcome.FAILED, error=str(e))

        self._count(decision.outcome is Outcome.FAILED)
        return decision

    def listen(self, events: Iterable[InboundEvent]) -> Iterator[Decision]:
        """Process events sequentially, yielding one decision per event"""
        for event in events:
            yield self.handle(event)

    def process_all(self, events: List[InboundEvent], progress: bool = False) -> List[Decision]:
        """
        Process a batch. Fingerprints are computed on a thread pool, decisions
        are taken in input order so the earlier event becomes the original.
        """
        if self.n_workers == 1:
            iterator = self.listen(events)
            if progress:
                iterator = tqdm(iterator, total=len(events), desc="Processing events")
            return list(iterator)

        with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
            futures = [executor.submit(self.engine.prepare, event) for event in events]
            pairs = zip(events, futures)
            if progress:
                pairs = tqdm(pairs, total=len(events), desc="Processing events")
            return [self._handle_prepared(event, future) for event, future in pairs]

    def _handle_prepared(self, event: InboundEvent, future) -> Decision:
        try:
            fingerprint = future.result()
        except Exception as e:
            logger.exception("Hashing failed for message %s", event.source_message_id)
            self._count(failed=True)
            return Decision(Outcome.FAILED, error=str(e))
        return self.handle(event, fingerprint)

    def update_reactions(self, payload: Dict) -> Dict:
        """Store a reaction count update from the platform feed"""
        conversation_id, message_id, reactions = parse_reaction(payload)
        try:
            total = self.engine.store.update_reactions(conversation_id, message_id, reactions)
        except StoreError as e:
            logger.error("Skipping reactions for %s/%s: %s", conversation_id, message_id, e)
            self._count(failed=True)
            return Decision(Outcome.FAILED, error=str(e)).to_dict()

        self._count(failed=False)
        return {'outcome': Outcome.REACTION.value, 'total_reactions': total}

    def listen_lines(self, lines: Iterable[str]) -> Iterator[Dict]:
        """
        JSON-lines boundary: one event per line in, one decision dict out.

        Lines with ``"type": "reaction"`` carry reaction count updates
        instead of messages.
        """
        for line in lines:
            line = line.strip()
            if not line:
                continue
            event = None
            try:
                payload = json.loads(line)
                if not isinstance(payload, dict):
                    raise UnsupportedEventError(f"Expected an object, got {type(payload).__name__}")
                if payload.get('type') == 'reaction':
                    data = self.update_reactions(payload)
                    data['source_message_id'] = str(payload['source_message_id'])
                else:
                    event = parse_event(payload)
            except (json.JSONDecodeError, UnsupportedEventError) as e:
                logger.warning("Dropping malformed event: %s", e)
                self._count(failed=True)
                data = Decision(Outcome.FAILED, error=str(e)).to_dict()

            if event is not None:
                data = self.handle(event).to_dict()
                data['source_message_id'] = event.source_message_id
            yield data

    def _count(self, failed: bool):
        with self._lock:
            self.processed += 1
            if failed:
                self.failed += 1

    def summary(self) -> Dict[str, int]:
        return {'processed': self.processed, 'failed': self.failed}
