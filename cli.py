# cli.py

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from config import SystemConfig
from core.exceptions import ReportError
from core.models import InboundEvent, MediaKind, Outcome, Poster, utc
from core.service import RepostGuard
from utils.file_utils import get_media_files, media_kind_for
from utils.logging_config import setup_logging


def _parse_time(value):
    if value is None:
        return None
    return utc(datetime.fromisoformat(value))


def _reaction_value(value):
    """Reaction total, or a JSON list of platform reaction objects"""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        reactions = json.loads(value)
    except json.JSONDecodeError:
        reactions = None
    if not isinstance(reactions, list):
        raise argparse.ArgumentTypeError(f"expected a number or a JSON list, got {value!r}")
    return reactions


def _write_output(data, output):
    if output:
        with open(output, 'w') as f:
            json.dump(data, f, indent=2, default=str)
        print(f"\nResults saved to: {output}")


def hash_command(guard, args):
    """Print the fingerprint of a file"""
    kind = MediaKind.parse(args.kind) if args.kind else media_kind_for(args.path)
    if kind is None or kind is MediaKind.TEXT:
        print(f"Error: unsupported kind {args.kind}")
        return 1
    fingerprint = guard.hasher.hash_file(args.path, kind)
    print(f"{fingerprint.kind.value} {fingerprint.value}")
    return 0


def ingest_command(guard, args):
    """Run a single file through the duplicate check"""
    kind = args.kind or media_kind_for(args.path).value
    event = InboundEvent(
        media_kind=kind,
        author=Poster(args.author, args.name),
        conversation_id=args.conversation,
        source_message_id=args.message or Path(args.path).name,
        timestamp=_parse_time(args.timestamp) or utc(),
        buffer=Path(args.path).read_bytes(),
        mime_type=args.mime_type
    )
    decision = guard.listener.handle(event)
    print(json.dumps(decision.to_dict(), indent=2))
    return 1 if decision.outcome is Outcome.FAILED else 0


def backfill_command(guard, args):
    """Fingerprint every media file in a directory as if posted by one user"""
    paths = get_media_files(args.directory, recursive=not args.no_recursive)
    paths.sort(key=lambda p: (Path(p).stat().st_mtime, p))
    print(f"Found {len(paths)} media files")

    events = [
        InboundEvent(
            media_kind=media_kind_for(path).value,
            author=Poster(args.author, args.name),
            conversation_id=args.conversation,
            source_message_id=Path(path).name,
            timestamp=datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc),
            buffer=Path(path).read_bytes()
        )
        for path in paths
    ]
    decisions = guard.listener.process_all(events, progress=True)

    duplicates = [
        (path, d) for path, d in zip(paths, decisions) if d.is_duplicate
    ]
    accepted = sum(1 for d in decisions if d.outcome is Outcome.ACCEPTED)
    print(f"\nAccepted {accepted}, duplicates {len(duplicates)}, "
          f"failed {guard.listener.failed}")
    for path, decision in duplicates:
        print(f"  - {path} -> {decision.notification.original_message_link} "
              f"(distance {decision.notification.distance})")

    stats = guard.performance.get_statistics('hash')
    if stats:
        print(f"Hashing: {stats['count']} files, mean {stats['mean'] * 1000:.1f} ms")
    if args.metrics:
        guard.performance.save_metrics(args.metrics)
        print(f"Metrics saved to: {args.metrics}")
    return 0


def report_command(guard, args):
    """Print the weekly report"""
    try:
        report = guard.statistics.weekly_report(
            window_start=_parse_time(args.start),
            window_end=_parse_time(args.end),
            conversation_id=args.conversation
        )
    except ReportError as e:
        print(f"Error: {e}")
        return 1
    data = report.to_dict()

    print(f"Report {report.window_start:%Y-%m-%d} - {report.window_end:%Y-%m-%d}")
    print("\nTop contributors:")
    for i, user in enumerate(report.top_contributors, 1):
        print(f"{i}. {user.display_name or user.user_id}: {user.total_messages} messages")
    print("\nMedia breakdown:")
    for kind, count in report.media_breakdown.items():
        print(f"  {kind}: {count}")
    print("\nDuplicate offenders:")
    for i, user in enumerate(report.top_offenders, 1):
        print(f"{i}. {user.display_name or user.user_id}: {user.count} duplicates")
    if report.top_engagement:
        top = report.top_engagement
        print(f"\nTop engagement: {top.display_name or top.user_id} "
              f"({top.total_reactions} reactions)")

    _write_output(data, args.output)
    return 0


def engagement_command(guard, args):
    """Print the most reacted-to user"""
    try:
        top = guard.statistics.engagement_report(
            window_start=_parse_time(args.start),
            window_end=_parse_time(args.end),
            conversation_id=args.conversation
        )
    except ReportError as e:
        print(f"Error: {e}")
        return 1
    if top is None:
        print("No reactions in this window")
    else:
        print(f"{top.display_name or top.user_id}: {top.total_reactions} reactions")
    return 0


def reactions_command(guard, args):
    """Record a reaction total or show the most recent ones"""
    if args.set is not None:
        total = guard.store.update_reactions(args.conversation, args.message, args.set)
        print(f"Stored {total} reactions for {args.conversation}/{args.message}")
        return 0

    print(f"Messages with reactions: {guard.store.reaction_count()}")
    for i, entry in enumerate(guard.store.recent_reactions(args.limit), 1):
        print(f"{i}. {entry['conversation_id']}/{entry['message_id']}: "
              f"{entry['total_reactions']} ({entry['last_updated']:%Y-%m-%d %H:%M})")
    return 0


def user_command(guard, args):
    """Print the running statistics of one user"""
    try:
        stats = guard.statistics.user_stats(args.user_id)
    except ReportError as e:
        print(f"Error: {e}")
        return 1
    if stats is None:
        print(f"No statistics for user {args.user_id}")
        return 1
    for key, value in vars(stats).items():
        print(f"{key}: {value}")
    return 0


def main_cli(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Repost Guard - Command Line Interface"
    )
    parser.add_argument('-c', '--config', default='config.yaml', help='Path to YAML config')
    parser.add_argument('--database', help='Override database path')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Hash command
    hash_parser = subparsers.add_parser('hash', help='Print the fingerprint of a file')
    hash_parser.add_argument('path', help='Path to media file')
    hash_parser.add_argument('-k', '--kind', help='Media kind (image, video, exact-binary)')
    hash_parser.set_defaults(func=hash_command)

    # Ingest command
    ingest_parser = subparsers.add_parser('ingest', help='Check a single file for duplicates')
    ingest_parser.add_argument('path', help='Path to media file')
    ingest_parser.add_argument('-a', '--author', type=int, required=True, help='Poster id')
    ingest_parser.add_argument('-n', '--name', help='Poster display name')
    ingest_parser.add_argument('--conversation', default='local', help='Conversation id')
    ingest_parser.add_argument('--message', help='Source message id')
    ingest_parser.add_argument('-k', '--kind', help='Media kind (image, video, exact-binary)')
    ingest_parser.add_argument('--mime-type', help='Declared MIME type')
    ingest_parser.add_argument('--timestamp', help='ISO-8601 post time')
    ingest_parser.set_defaults(func=ingest_command)

    # Backfill command
    backfill_parser = subparsers.add_parser('backfill', help='Fingerprint a directory of media')
    backfill_parser.add_argument('directory', help='Directory to scan')
    backfill_parser.add_argument('-a', '--author', type=int, required=True, help='Poster id')
    backfill_parser.add_argument('-n', '--name', help='Poster display name')
    backfill_parser.add_argument('--conversation', default='local', help='Conversation id')
    backfill_parser.add_argument('--no-recursive', action='store_true', help='Do not descend into subdirectories')
    backfill_parser.add_argument('--metrics', help='Output JSON file for timing metrics')
    backfill_parser.set_defaults(func=backfill_command)

    # Report command
    report_parser = subparsers.add_parser('report', help='Weekly statistics report')
    report_parser.add_argument('--start', help='ISO-8601 window start')
    report_parser.add_argument('--end', help='ISO-8601 window end')
    report_parser.add_argument('--conversation', help='Restrict to one conversation')
    report_parser.add_argument('-o', '--output', help='Output JSON file for the report')
    report_parser.set_defaults(func=report_command)

    # Engagement command
    engagement_parser = subparsers.add_parser('engagement', help='Most reacted-to user')
    engagement_parser.add_argument('--start', help='ISO-8601 window start')
    engagement_parser.add_argument('--end', help='ISO-8601 window end')
    engagement_parser.add_argument('--conversation', help='Restrict to one conversation')
    engagement_parser.set_defaults(func=engagement_command)

    # Reactions command
    reactions_parser = subparsers.add_parser('reactions', help='Inspect or record reaction counts')
    reactions_parser.add_argument('--conversation', default='local', help='Conversation id')
    reactions_parser.add_argument('--message', help='Message id')
    reactions_parser.add_argument('--set', type=_reaction_value,
                                  help='Total, or JSON list of reaction objects, to store for --message')
    reactions_parser.add_argument('-l', '--limit', type=int, default=5, help='Recent entries to show')
    reactions_parser.set_defaults(func=reactions_command)

    # User command
    user_parser = subparsers.add_parser('user', help='Running statistics of one user')
    user_parser.add_argument('user_id', type=int, help='Poster id')
    user_parser.set_defaults(func=user_command)

    # Parse arguments
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'reactions' and args.set is not None and not args.message:
        parser.error("--set requires --message")

    config = SystemConfig.load(args.config)
    if args.database:
        config.database_path = args.database
    setup_logging(config.log_level, config.log_dir)

    # Execute command
    with RepostGuard(config) as guard:
        return args.func(guard, args)


if __name__ == "__main__":
    sys.exit(main_cli())
