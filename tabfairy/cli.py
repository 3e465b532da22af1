"""Command-line interface for TabFairy."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, Optional

from .config import MonitorConfig
from .core.connector import ChromeConnectionError, ChromeConnector
from .errors import ProtectedTabError, TabFairyError, TabNotFoundError
from .events import TabEvent
from .models import OptimizationAction
from .service import TabFairyService


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )

logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert model objects (anything with ``to_dict``) for json.dumps."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def print_json(value: Any) -> None:
    print(json.dumps(to_jsonable(value), indent=2))


async def test_connection(config: MonitorConfig) -> int:
    """Test connection to Chrome and display version information."""
    connector = ChromeConnector(host=config.host, port=config.port)

    try:
        print(f"Connecting to Chrome at {config.host}:{config.port}...")
        await connector.connect()
        print("✓ Connected successfully")

        version_info = await connector.get_browser_version()
        print("\nChrome Browser Information:")
        print(f"  Browser: {version_info.get('product', 'Unknown')}")
        print(f"  Protocol Version: {version_info.get('protocolVersion', 'Unknown')}")
        print(f"  User Agent: {version_info.get('userAgent', 'Unknown')}")

        targets = await connector.list_page_targets()
        print(f"\n✓ {len(targets)} page tab(s) visible")
        return 0

    except ChromeConnectionError as e:
        print(f"✗ Connection failed: {e}")
        print("\nTroubleshooting:")
        print("1. Make sure Chrome is running with debug port enabled:")
        print(f"   chrome --remote-debugging-port={config.port}")
        print("2. Check if another process is using the port")
        print("3. Try a different port with --port option")
        return 1

    except Exception as e:
        print(f"✗ Unexpected error: {e}")
        return 1

    finally:
        if connector.websocket:
            await connector.disconnect()


async def run_query(config: MonitorConfig, query: str, **options) -> int:
    """Connect, run one TabsAPI query and print the result as JSON."""
    service = TabFairyService(config)
    try:
        await service.connect()
        api = service.api

        if query == "tabs":
            result = await api.get_tabs()
        elif query == "resources":
            result = await api.get_tabs(include_resources=True)
        elif query == "scores":
            result = await api.get_all_scores()
        elif query == "suggestions":
            result = await api.get_all_suggestions(min_score=options.get("min_score", 0))
        else:
            raise ValueError(f"Unknown query: {query}")

        print_json(result)
        return 0

    except TabFairyError as e:
        print(f"Query failed: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await service.stop()


async def optimize_tab(config: MonitorConfig, tab_id: int, action: str) -> int:
    """Apply an optimization action to one tab."""
    service = TabFairyService(config)
    try:
        await service.connect()
        result = await service.api.optimize_tab(tab_id, action)
        print_json(result)
        return 0 if result.get("success") else 1

    except (TabNotFoundError, ProtectedTabError, ValueError) as e:
        print(f"Optimization refused: {e}", file=sys.stderr)
        return 1

    except TabFairyError as e:
        print(f"Optimization failed: {e}", file=sys.stderr)
        return 1

    finally:
        await service.stop()


def print_bus_event(event: TabEvent):
    def handler(payload: dict) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        tab_id = payload.get("tabId")
        if event == TabEvent.SCORE_UPDATED:
            score = payload["score"]
            print(f"[{timestamp}] score    tab {tab_id}: {score.total_score}")
        elif event == TabEvent.RESOURCE_UPDATED:
            usage = payload["resourceUsage"]
            print(f"[{timestamp}] usage    tab {tab_id}: {usage.memory:g}MB, {usage.cpu:g}% CPU")
        elif event == TabEvent.TAB_CREATED:
            tab = payload.get("tab")
            print(f"[{timestamp}] created  tab {tab.id if tab else '?'}: {tab.url if tab else ''}")
        elif event == TabEvent.TAB_REMOVED:
            print(f"[{timestamp}] removed  tab {tab_id}")
        else:
            print(f"[{timestamp}] {event.value} tab {tab_id}: {payload.get('changeInfo', {})}")
    return handler


async def monitor(config: MonitorConfig, duration: Optional[float] = None) -> int:
    """Run the polling pipeline and print bus events until stopped."""
    service = TabFairyService(config)
    for event in TabEvent:
        service.bus.subscribe(event, print_bus_event(event))

    try:
        print(f"Monitoring tabs on {config.host}:{config.port} "
              f"(every {config.polling_interval:g}s, Press Ctrl+C to stop)")
        await service.run(duration)
        print_json(service.api.get_cached_data())
        return 0

    except ChromeConnectionError as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nMonitoring stopped by user.")
        return 0

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TabFairy - per-tab resource monitoring and optimization for Chrome"
    )

    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Test connection to Chrome and display version information"
    )

    parser.add_argument(
        "--list-tabs",
        action="store_true",
        help="List open tabs in JSON format"
    )

    parser.add_argument(
        "--resources",
        action="store_true",
        help="List tabs with estimated resource usage"
    )

    parser.add_argument(
        "--scores",
        action="store_true",
        help="Show resource scores for all tabs, highest first"
    )

    parser.add_argument(
        "--suggestions",
        action="store_true",
        help="Show optimization suggestions per tab"
    )

    parser.add_argument(
        "--min-score",
        type=int,
        default=0,
        help="Only show suggestions for tabs scoring at least this much"
    )

    parser.add_argument(
        "--optimize",
        type=int,
        metavar="TAB_ID",
        help="Apply an optimization action to a tab"
    )

    parser.add_argument(
        "--action",
        choices=[a.value for a in OptimizationAction if a != OptimizationAction.NONE],
        default=OptimizationAction.DISCARD.value,
        help="Action for --optimize (default: discard)"
    )

    parser.add_argument(
        "--monitor",
        action="store_true",
        help="Continuously monitor tabs and print updates"
    )

    parser.add_argument(
        "--duration",
        type=float,
        help="Stop --monitor after this many seconds"
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Chrome debug host (default: $CHROME_DEBUG_HOST or 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Chrome debug port (default: $CHROME_DEBUG_PORT or 9222)"
    )

    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between cache refreshes (default: 3)"
    )

    parser.add_argument(
        "--cache-ttl",
        type=float,
        default=None,
        help="Seconds before cached data counts as expired (default: 5)"
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Tabs estimated concurrently per batch (default: 5)"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for estimate jitter (reproducible output)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser


async def main(argv: Optional[list] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = MonitorConfig(
            host=args.host,
            port=args.port,
            polling_interval=args.poll_interval,
            cache_ttl=args.cache_ttl,
            batch_size=args.batch_size,
            seed=args.seed,
        )
    except ValueError as e:
        parser.error(str(e))

    if args.test_connection:
        exit_code = await test_connection(config)
        sys.exit(exit_code)
    elif args.list_tabs:
        exit_code = await run_query(config, "tabs")
        sys.exit(exit_code)
    elif args.resources:
        exit_code = await run_query(config, "resources")
        sys.exit(exit_code)
    elif args.scores:
        exit_code = await run_query(config, "scores")
        sys.exit(exit_code)
    elif args.suggestions:
        exit_code = await run_query(config, "suggestions", min_score=args.min_score)
        sys.exit(exit_code)
    elif args.optimize is not None:
        exit_code = await optimize_tab(config, args.optimize, args.action)
        sys.exit(exit_code)
    elif args.monitor:
        exit_code = await monitor(config, args.duration)
        sys.exit(exit_code)
    else:
        parser.print_help()
        print("\nAvailable commands:")
        print("  --test-connection       Test Chrome connection")
        print("  --list-tabs             List tabs (JSON)")
        print("  --resources             Tabs with resource usage (JSON)")
        print("  --scores                Tab scores, highest first (JSON)")
        print("  --suggestions           Optimization suggestions (JSON), filter with --min-score")
        print("  --optimize TAB_ID       Apply --action (discard, close, sleep, pause_media)")
        print("  --monitor               Poll continuously; stop with Ctrl+C or --duration")


def cli_entry_point():
    """Entry point for pip-installed command."""
    asyncio.run(main())


if __name__ == "__main__":
    asyncio.run(main())
