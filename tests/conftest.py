# tests/conftest.py

from datetime import timedelta

import pytest

from config import SystemConfig
from core.models import InboundEvent, Poster
from core.service import RepostGuard
from imaging import BASE_TIME, block_image, encode


@pytest.fixture
def original_image():
    return block_image(seed=7)


@pytest.fixture
def original_png(original_image):
    return encode(original_image, '.png')


@pytest.fixture
def config(tmp_path):
    return SystemConfig(database_path=str(tmp_path / "store.db"), log_dir=str(tmp_path / "logs"))


@pytest.fixture
def guard(config):
    with RepostGuard(config) as service:
        yield service


@pytest.fixture
def make_event():
    """Factory for inbound events with increasing message ids"""
    counter = {'n': 0}

    def factory(kind, user_id, buffer=None, name=None, offset=None,
                conversation='-1001234567890', mime_type=None):
        counter['n'] += 1
        minutes = counter['n'] if offset is None else offset
        return InboundEvent(
            media_kind=kind,
            author=Poster(user_id, name),
            conversation_id=conversation,
            source_message_id=str(100 + counter['n']),
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            buffer=buffer,
            mime_type=mime_type
        )

    return factory
