# core/statistics.py

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Tuple

from core.database import MediaStore
from core.exceptions import ReportError, StoreError
from core.models import (
    ContributorStats, EngagementStats, MediaKind, OffenderStats, UserStats,
    WeeklyReport, utc
)

logger = logging.getLogger(__name__)

BREAKDOWN_KINDS = [MediaKind.IMAGE, MediaKind.VIDEO, MediaKind.BINARY, MediaKind.TEXT]


class StatisticsAggregator:
    """
    Read-only rollups over the event log.

    Reports are a pure function of the store contents for the requested
    window, so rerunning a report over the same data gives the same result.
    """

    def __init__(self,
                 store: MediaStore,
                 window_days: int = 7,
                 top_contributors: int = 5,
                 top_offenders: int = 3,
                 group_id: Optional[str] = None):
        self.store = store
        self.window_days = window_days
        self.top_contributors = top_contributors
        self.top_offenders = top_offenders
        self.group_id = group_id

    def resolve_window(self, window_start: Optional[datetime] = None,
                       window_end: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """Half-open [start, end) window, defaulting to the last window_days"""
        end = utc(window_end)
        start = utc(window_start) if window_start is not None else end - timedelta(days=self.window_days)
        if start > end:
            raise ReportError(f"Window start {start.isoformat()} is after end {end.isoformat()}")
        return start, end

    def weekly_report(self,
                      window_start: Optional[datetime] = None,
                      window_end: Optional[datetime] = None,
                      reaction_counts: Optional[Dict[int, int]] = None,
                      conversation_id: Optional[str] = None) -> WeeklyReport:
        """
        Aggregate contributors, media breakdown, duplicate offenders and
        top engagement for a window.

        Args:
            reaction_counts: poster id -> reactions received in the window.
                When omitted, totals are read from the stored reaction table
                for the media posted in the window.
            conversation_id: restrict the report to one conversation
        """
        start, end = self.resolve_window(window_start, window_end)

        try:
            media = self.store.get_fingerprints(since=start, until=end,
                                                conversation_id=conversation_id)
            texts = self.store.get_text_messages(since=start, until=end,
                                                 conversation_id=conversation_id)
            duplicates = self.store.get_duplicate_events(since=start, until=end,
                                                         conversation_id=conversation_id)
            if reaction_counts is None:
                reaction_counts = self._stored_reactions(media)
        except StoreError as e:
            logger.error("Report for %s - %s failed: %s", start, end, e)
            raise ReportError(f"Cannot compute report: {e}") from e

        # Merge media and text in time order so ties keep first appearance
        activity = [(r.posted_at, r.poster, r.media_kind) for r in media]
        activity += [(t.timestamp, t.author, MediaKind.TEXT) for t in texts]
        activity.sort(key=lambda item: item[0])

        users = OrderedDict()
        names = {}
        breakdown = {kind.value: 0 for kind in BREAKDOWN_KINDS}

        for _, poster, kind in activity:
            entry = users.setdefault(poster.id, {kind.value: 0 for kind in BREAKDOWN_KINDS})
            entry[kind.value] += 1
            breakdown[kind.value] += 1
            if poster.display_name:
                names[poster.id] = poster.display_name

        contributors = [
            ContributorStats(
                user_id=user_id,
                display_name=names.get(user_id),
                total_messages=sum(counts.values()),
                breakdown=dict(counts)
            )
            for user_id, counts in users.items()
        ]
        contributors.sort(key=lambda c: c.total_messages, reverse=True)

        offenders = self._rank_offenders(duplicates)
        engagement = self._top_engagement(reaction_counts, names)

        report = WeeklyReport(
            window_start=start,
            window_end=end,
            top_contributors=contributors[:self.top_contributors],
            media_breakdown=breakdown,
            top_offenders=offenders[:self.top_offenders],
            top_engagement=engagement
        )

        logger.info("Report %s - %s: %d users, %d duplicates",
                    start.date(), end.date(), len(users), len(duplicates))
        return report

    def engagement_report(self,
                          window_start: Optional[datetime] = None,
                          window_end: Optional[datetime] = None,
                          reaction_counts: Optional[Dict[int, int]] = None,
                          conversation_id: Optional[str] = None) -> Optional[EngagementStats]:
        """Only the user whose media collected the most reactions"""
        start, end = self.resolve_window(window_start, window_end)
        try:
            media = self.store.get_fingerprints(since=start, until=end,
                                                conversation_id=conversation_id)
            if reaction_counts is None:
                reaction_counts = self._stored_reactions(media)
        except StoreError as e:
            raise ReportError(f"Cannot compute engagement: {e}") from e

        names = {r.poster.id: r.poster.display_name for r in media if r.poster.display_name}
        return self._top_engagement(reaction_counts, names)

    def user_stats(self, user_id: int) -> Optional[UserStats]:
        try:
            return self.store.get_user_stats(user_id)
        except StoreError as e:
            raise ReportError(f"Cannot read stats for user {user_id}: {e}") from e

    def digest_targets(self, extra: Optional[List[str]] = None) -> List[str]:
        """Conversations the scheduled digest should be posted to"""
        try:
            targets = self.store.conversation_ids()
        except StoreError as e:
            raise ReportError(f"Cannot list conversations: {e}") from e

        for conversation in list(extra or []) + ([self.group_id] if self.group_id else []):
            if str(conversation) not in targets:
                targets.append(str(conversation))
        return targets

    def _stored_reactions(self, media) -> Dict[int, int]:
        """Reactions received per poster on the given media records"""
        reaction_map = self.store.get_reaction_map()
        totals = OrderedDict()
        for record in media:
            count = reaction_map.get((record.origin.conversation_id, record.origin.message_id), 0)
            if count > 0:
                totals[record.poster.id] = totals.get(record.poster.id, 0) + count
        return totals

    @staticmethod
    def _rank_offenders(duplicates) -> List[OffenderStats]:
        counts = OrderedDict()
        names = {}
        for event in duplicates:
            counts[event.offender.id] = counts.get(event.offender.id, 0) + 1
            if event.offender.display_name:
                names[event.offender.id] = event.offender.display_name

        offenders = [
            OffenderStats(user_id=user_id, display_name=names.get(user_id), count=count)
            for user_id, count in counts.items()
            if count > 0
        ]
        offenders.sort(key=lambda o: o.count, reverse=True)
        return offenders

    @staticmethod
    def _top_engagement(reaction_counts: Dict[int, int],
                        names: Dict[int, str]) -> Optional[EngagementStats]:
        best = None
        for user_id, total in reaction_counts.items():
            if total <= 0:
                continue
            if best is None or total > best[1]:
                best = (user_id, total)

        if best is None:
            return None
        return EngagementStats(user_id=best[0], display_name=names.get(best[0]),
                               total_reactions=best[1])
