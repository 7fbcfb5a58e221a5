# tests/test_listener.py

import base64
import json
from datetime import timedelta

import pytest

from core.exceptions import StoreError, UnsupportedEventError
from core.listener import EventListener, parse_event
from core.models import Outcome
from imaging import BASE_TIME, block_image, encode


def test_store_failure_is_contained(guard, make_event, original_png, monkeypatch):
    search = guard.index.search
    calls = {'n': 0}

    def flaky_search(fingerprint, threshold=None):
        calls['n'] += 1
        if calls['n'] == 1:
            raise StoreError("disk I/O error")
        return search(fingerprint, threshold)

    monkeypatch.setattr(guard.index, 'search', flaky_search)

    events = [make_event('image', 1, original_png), make_event('image', 2, original_png)]
    decisions = list(guard.listener.listen(events))

    assert decisions[0].outcome is Outcome.FAILED
    assert "disk I/O error" in decisions[0].error
    assert decisions[1].outcome is Outcome.ACCEPTED
    assert guard.listener.summary() == {'processed': 2, 'failed': 1}


def test_unexpected_error_is_contained(guard, make_event, monkeypatch):
    def explode(buffer, kind):
        raise RuntimeError("decoder crashed")

    monkeypatch.setattr(guard.engine, 'fingerprint', explode)

    decision = guard.listener.handle(make_event('video', 1, b"clip"))

    assert decision.outcome is Outcome.FAILED
    assert guard.listener.failed == 1


def test_process_all_keeps_input_order(guard, make_event):
    listener = EventListener(guard.engine, n_workers=2)
    events = [make_event('image', i, encode(block_image(seed=40 + i))) for i in range(4)]
    events.append(make_event('text', 9))

    decisions = listener.process_all(events)

    assert [d.outcome for d in decisions] == [Outcome.ACCEPTED] * 4 + [Outcome.TEXT]
    assert [d.record.poster.id for d in decisions[:4]] == [0, 1, 2, 3]
    assert listener.summary() == {'processed': 5, 'failed': 0}


def test_parse_event_with_base64_buffer(original_png):
    event = parse_event({
        'media_kind': 'image',
        'author': {'id': '42', 'display_name': 'dana'},
        'conversation_id': -100123,
        'source_message_id': 7,
        'timestamp': 1709553600,
        'buffer': base64.b64encode(original_png).decode()
    })

    assert event.author.id == 42
    assert event.author.display_name == 'dana'
    assert event.conversation_id == '-100123'
    assert event.source_message_id == '7'
    assert event.buffer == original_png
    assert event.timestamp.tzinfo is not None


def test_parse_event_reads_path(tmp_path):
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4")

    event = parse_event({
        'media_kind': 'exact-binary',
        'author': 3,
        'conversation_id': 'c',
        'source_message_id': 'm',
        'timestamp': '2024-03-04T12:00:00+00:00',
        'path': str(path)
    })

    assert event.buffer == b"%PDF-1.4"
    assert event.timestamp.year == 2024


@pytest.mark.parametrize("payload", [
    {'author': 1, 'conversation_id': 'c', 'source_message_id': 'm'},
    {'media_kind': 'image', 'author': 'nobody', 'conversation_id': 'c', 'source_message_id': 'm'},
    {'media_kind': 'image', 'author': 1, 'conversation_id': 'c', 'source_message_id': 'm',
     'buffer': '***not base64***'},
    {'media_kind': 'image', 'author': 1, 'conversation_id': 'c', 'source_message_id': 'm',
     'path': '/does/not/exist.png'},
])
def test_parse_event_rejects_malformed(payload):
    with pytest.raises(UnsupportedEventError):
        parse_event(payload)


def test_listen_lines(guard, original_png):
    payload = base64.b64encode(original_png).decode()
    lines = [
        json.dumps({'media_kind': 'image', 'author': 1, 'conversation_id': '-1001234567890',
                    'source_message_id': '1', 'buffer': payload}),
        "",
        "{not json",
        json.dumps({'media_kind': 'image', 'author': 2, 'conversation_id': '-1001234567890',
                    'source_message_id': '2', 'buffer': payload}),
        json.dumps({'media_kind': 'text', 'author': 2, 'conversation_id': '-1001234567890',
                    'source_message_id': '3'}),
    ]

    results = list(guard.listener.listen_lines(lines))

    assert [r['outcome'] for r in results] == ['accepted', 'failed', 'duplicate', 'text']
    assert results[2]['source_message_id'] == '2'
    assert results[2]['duplicate']['original_message_link'] == "https://t.me/c/1234567890/1"
    assert guard.listener.summary() == {'processed': 4, 'failed': 1}


def test_process_all_first_event_is_original(guard, make_event, original_png):
    listener = EventListener(guard.engine, n_workers=4)
    events = [make_event('image', user_id, original_png) for user_id in range(6)]

    decisions = listener.process_all(events)

    assert decisions[0].outcome is Outcome.ACCEPTED
    assert all(d.is_duplicate for d in decisions[1:])
    assert {d.notification.original_author.id for d in decisions[1:]} == {0}
    assert guard.store.get_user_stats(0).image_count == 1


def test_listen_lines_reaction_updates(guard, make_event, original_png):
    post = make_event('image', 1, original_png, name='alice')
    guard.engine.process(post)
    lines = [
        json.dumps({'type': 'reaction', 'conversation_id': post.conversation_id,
                    'source_message_id': post.source_message_id, 'reactions': 2}),
        json.dumps({'type': 'reaction', 'conversation_id': post.conversation_id,
                    'source_message_id': post.source_message_id,
                    'reactions': [{'type': 'emoji', 'emoji': '+1', 'total_count': 4},
                                  {'type': 'emoji', 'emoji': 'fire'}]}),
        json.dumps({'type': 'reaction', 'conversation_id': post.conversation_id,
                    'source_message_id': '999', 'total_reactions': 1}),
        json.dumps({'type': 'reaction', 'conversation_id': post.conversation_id,
                    'source_message_id': '998', 'reactions': 'lots'}),
        json.dumps({'type': 'reaction', 'source_message_id': '997', 'reactions': 1}),
    ]

    results = list(guard.listener.listen_lines(lines))

    assert [r['outcome'] for r in results] == ['reaction', 'reaction', 'reaction', 'failed', 'failed']
    assert results[1]['total_reactions'] == 5
    assert results[1]['source_message_id'] == post.source_message_id
    assert guard.store.get_reactions(post.conversation_id, post.source_message_id) == 5
    assert guard.store.reaction_count() == 2

    top = guard.statistics.engagement_report(BASE_TIME, BASE_TIME + timedelta(days=7))
    assert top.user_id == 1
    assert top.total_reactions == 5


def test_listen_lines_rejects_non_objects(guard):
    results = list(guard.listener.listen_lines(["[1, 2]", "42"]))

    assert [r['outcome'] for r in results] == ['failed', 'failed']
    assert guard.listener.summary() == {'processed': 2, 'failed': 2}
