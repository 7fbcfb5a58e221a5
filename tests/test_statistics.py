# tests/test_statistics.py

from datetime import timedelta

import pytest

from core.exceptions import ReportError
from core.models import Outcome
from imaging import BASE_TIME, block_image, encode

WINDOW_START = BASE_TIME
WINDOW_END = BASE_TIME + timedelta(days=7)


@pytest.fixture
def busy_week(guard, make_event):
    """10 messages from user 1, 3 duplicates from user 2, a little from user 3"""
    meme = encode(block_image(seed=21))

    assert guard.engine.process(make_event('image', 1, meme, name='alice')).outcome is Outcome.ACCEPTED
    for _ in range(9):
        guard.engine.process(make_event('text', 1, name='alice'))
    for _ in range(3):
        assert guard.engine.process(make_event('image', 2, meme, name='bob')).is_duplicate
    guard.engine.process(make_event('text', 3, name='carol'))
    guard.engine.process(make_event('video', 3, b"video-bytes", name='carol'))
    return guard


def test_top_contributor_and_offender(busy_week):
    report = busy_week.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert report.top_contributors[0].user_id == 1
    assert report.top_contributors[0].total_messages == 10
    assert report.top_contributors[0].breakdown == {
        'image': 1, 'video': 0, 'exact-binary': 0, 'text': 9
    }
    assert report.top_offenders[0].user_id == 2
    assert report.top_offenders[0].count == 3
    assert report.top_offenders[0].display_name == 'bob'


def test_duplicates_do_not_count_as_contributions(busy_week):
    report = busy_week.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert 2 not in [c.user_id for c in report.top_contributors]


def test_media_breakdown(busy_week):
    report = busy_week.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert report.media_breakdown == {'image': 1, 'video': 1, 'exact-binary': 0, 'text': 10}


def test_report_is_repeatable(busy_week):
    first = busy_week.statistics.weekly_report(WINDOW_START, WINDOW_END)
    second = busy_week.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert first.to_dict() == second.to_dict()


def test_window_excludes_older_events(guard, make_event):
    guard.engine.process(make_event('text', 1, offset=-60))
    guard.engine.process(make_event('text', 2, offset=60))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert [c.user_id for c in report.top_contributors] == [2]


def test_window_end_is_exclusive(guard, make_event):
    guard.engine.process(make_event('text', 1, offset=7 * 24 * 60))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert report.top_contributors == []


def test_top_lists_are_capped(guard, make_event):
    for user_id in range(1, 9):
        for _ in range(user_id):
            guard.engine.process(make_event('text', user_id))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert [c.user_id for c in report.top_contributors] == [8, 7, 6, 5, 4]


def test_ties_keep_first_appearance(guard, make_event):
    guard.engine.process(make_event('text', 4))
    guard.engine.process(make_event('text', 9))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert [c.user_id for c in report.top_contributors] == [4, 9]


def test_no_duplicates_means_no_offenders(guard, make_event):
    guard.engine.process(make_event('text', 1))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert report.top_offenders == []
    assert report.top_engagement is None


def test_engagement_from_supplied_counts(busy_week):
    report = busy_week.statistics.weekly_report(
        WINDOW_START, WINDOW_END, reaction_counts={1: 4, 3: 9, 2: 0}
    )

    assert report.top_engagement.user_id == 3
    assert report.top_engagement.total_reactions == 9
    assert report.top_engagement.display_name == 'carol'


def test_engagement_from_stored_reactions(guard, make_event):
    first = make_event('image', 1, encode(block_image(seed=31)), name='alice')
    second = make_event('image', 2, encode(block_image(seed=32)), name='bob')
    guard.engine.process(first)
    guard.engine.process(second)

    guard.store.update_reactions(first.conversation_id, first.source_message_id, 2)
    guard.store.update_reactions(second.conversation_id, second.source_message_id,
                                 [{'type': 'emoji', 'total_count': 3}, {'type': 'emoji'}])

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END)

    assert report.top_engagement.user_id == 2
    assert report.top_engagement.total_reactions == 4
    assert guard.statistics.engagement_report(WINDOW_START, WINDOW_END) == report.top_engagement


def test_reaction_updates_replace_previous_total(guard):
    guard.store.update_reactions(-100, 5, [{'type': 'emoji'}] * 3)
    guard.store.update_reactions(-100, 5, [{'type': 'emoji'}])

    assert guard.store.get_reactions("-100", "5") == 1
    assert guard.store.reaction_count() == 1
    assert guard.store.recent_reactions()[0]['total_reactions'] == 1


def test_report_per_conversation(guard, make_event):
    guard.engine.process(make_event('text', 1, conversation='a'))
    guard.engine.process(make_event('text', 2, conversation='b'))

    report = guard.statistics.weekly_report(WINDOW_START, WINDOW_END, conversation_id='b')

    assert [c.user_id for c in report.top_contributors] == [2]


def test_default_window_is_last_week(guard):
    start, end = guard.statistics.resolve_window(window_end=WINDOW_END)

    assert end - start == timedelta(days=7)


def test_inverted_window_rejected(guard):
    with pytest.raises(ReportError):
        guard.statistics.weekly_report(WINDOW_END, WINDOW_START)


def test_store_failure_surfaces_as_report_error(guard):
    guard.store.close()

    with pytest.raises(ReportError):
        guard.statistics.weekly_report(WINDOW_START, WINDOW_END)


def test_digest_targets(guard, make_event):
    guard.engine.process(make_event('video', 1, b"clip", conversation='-100777'))
    guard.statistics.group_id = '-100999'

    assert guard.statistics.digest_targets() == ['-100777', '-100999']
    assert guard.statistics.digest_targets(extra=['-100777']) == ['-100777', '-100999']


def test_user_stats_lookup(busy_week):
    stats = busy_week.statistics.user_stats(1)

    assert stats.total_messages == 10
    assert busy_week.statistics.user_stats(404) is None
