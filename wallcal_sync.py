#!/usr/bin/env python3
"""
wallcal sync - Calendar aggregation for the wall display.

Merges a Google account and ICS feeds into one cached event snapshot and
keeps it fresh in the background. This is the main entry point.
"""

import sys
import json
import argparse
from pathlib import Path

from wallcal.config import Config
from wallcal.errors import NoSourcesError, NotConnectedError
from wallcal.event_store import EventStore


EXAMPLE_CONFIG = """
[General]
refresh_minutes = 10
sync_days = 30

[Google]
token_file = "~/.local/share/wallcal/google-token.json"

[Calendar.primary]
id = "primary"
label = "Family"
color = "#4285f4"

[Feed.Holidays]
url = "https://example.com/holidays.ics"
label = "Holidays"
"""


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="wallcal - Calendar sync for Google Calendar and ICS feeds"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to configuration file (default: auto-detect)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output"
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "--sync",
        action="store_true",
        help="Run one sync now (Google account required) and print the summary"
    )
    action.add_argument(
        "--extend",
        metavar="TIME_MAX",
        help="Make sure events up to TIME_MAX (ISO-8601) are cached"
    )
    action.add_argument(
        "--show",
        action="store_true",
        help="Print the cached events"
    )
    return parser.parse_args(argv)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = Config.load(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        print("\nPlease create a configuration file at:")
        print(f"  - {Config.get_default_config_path()}")
        print("\nExample configuration:")
        print(EXAMPLE_CONFIG)
        return 1
    except Exception as e:
        print(f"Error loading configuration: {e}")
        return 1

    if args.debug:
        print(f"Loaded configuration from: {config.config_path}")
        print(f"  Google calendars: {len(config.calendars)}")
        print(f"  ICS feeds: {len(config.ical_feeds)}")
        print(f"  Sync window: {config.sync_days} days, refresh every {config.refresh_minutes} min")
        print(f"  Cache file: {config.cache_file}")

    store = EventStore(config)

    if args.show:
        _print_json(store.get_events())
        return 0

    if args.sync:
        try:
            summary = store.sync(require_google=True)
        except (NotConnectedError, NoSourcesError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Sync failed: {e}", file=sys.stderr)
            return 1
        _print_json(summary.to_dict())
        return 0

    if args.extend:
        try:
            result = store.extend(args.extend)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Sync failed: {e}", file=sys.stderr)
            return 1
        _print_json(result.to_dict())
        return 1 if result.conflict else 0

    # Run the background loop until interrupted
    if not store.start():
        print("Calendar auto-sync is disabled", file=sys.stderr)
        return 0
    try:
        store.scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        store.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
