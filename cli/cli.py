# cli/cli.py
"""
CLI registry and dispatcher for widget gate operations.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, Optional

# Ensure project root is in path for imports
_cli_dir = Path(__file__).parent
_project_root = _cli_dir.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from cli.verification import check_api_health, check_cors, check_widget
from widgetgate.core.exceptions import BaseAPIException, KeyCollisionError, StoreError
from widgetgate.db.session import create_all_tables, dispose_engine, transaction_session
from widgetgate.middleware.auth import TokenManager
from widgetgate.services.calculators import ISSUABLE_CALCULATOR_TYPES
from widgetgate.services.key_issuer import KeyIssuer
from widgetgate.services.key_store import SqlWidgetKeyStore


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return os.isatty(sys.stdout.fileno())


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError):
        return None


async def cmd_create_tables(args: argparse.Namespace) -> int:
    """Command: Create every table the gate uses."""
    print_info("Creating tables...")
    try:
        await create_all_tables()
    finally:
        await dispose_engine()
    print_success("Tables created")
    return 0


async def cmd_issue_key(args: argparse.Namespace) -> int:
    """Command: Issue a widget key for a contractor."""
    contractor_id = _parse_uuid(args.contractor_id)
    if contractor_id is None:
        print_error(f"Invalid contractor id: {args.contractor_id}")
        return 1

    print_info(f"Issuing {args.calculator} key for contractor {contractor_id}...")
    try:
        async with transaction_session() as session:
            issuer = KeyIssuer(SqlWidgetKeyStore(session))
            issued = await issuer.issue_with_retry(contractor_id, args.calculator, args.domain)
    except KeyCollisionError:
        print_error("Could not mint a unique key; try again")
        return 1
    except StoreError as e:
        print_error(f"Store failure during {e.operation}: {e.message}")
        return 1
    except BaseAPIException as e:
        print_error(e.message)
        return 1
    finally:
        await dispose_engine()

    print_success(f"Issued key {issued.key}")
    if issued.record.domain:
        print_info(f"Locked to domain: {issued.record.domain}")
    print()
    print(issued.embed_snippet)
    return 0


async def cmd_issue_token(args: argparse.Namespace) -> int:
    """Command: Mint a contractor bearer token for the key management API."""
    contractor_id = _parse_uuid(args.contractor_id)
    if contractor_id is None:
        print_error(f"Invalid contractor id: {args.contractor_id}")
        return 1

    expires = timedelta(minutes=args.minutes) if args.minutes else None
    token = TokenManager.create_contractor_token(contractor_id, args.email, expires)
    print_success("Token issued")
    print(token)
    return 0


async def cmd_check_widget(args: argparse.Namespace) -> int:
    """Command: Validate a widget exactly as an embedding page would."""
    print_info(f"Loading {args.calculator} widget as {args.domain}...")
    result = await check_widget(
        args.api_url,
        args.key,
        args.calculator,
        domain=args.domain,
        referer=args.referer,
    )

    if result.success:
        print_success(result.message)
        return 0

    print_error(result.message)
    if result.data.get('reason'):
        print_info(f"Reason: {result.data['reason']}")
    if result.data.get('description'):
        print_info(result.data['description'])
    if result.data.get('suggestion'):
        print_warning(result.data['suggestion'])
    return 1


async def cmd_verify_api_start(args: argparse.Namespace) -> int:
    """Command: Verify the API answers its liveness probe."""
    print_info(f"Checking API at {args.api_url}...")
    result = await check_api_health(args.api_url)

    if result.success:
        print_success(result.message)
        return 0

    print_error(result.message)
    if result.data.get('error'):
        print_warning("Is the server running? Start it with: uvicorn widgetgate.main:app")
    return 1


async def cmd_verify_cors(args: argparse.Namespace) -> int:
    """Command: Verify public widget endpoints accept cross-origin calls."""
    print_info(f"Preflighting widget endpoints from {args.origin}...")
    result = await check_cors(args.api_url, origin=args.origin)

    for endpoint, info in result.data.get('results', {}).items():
        if 'error' in info:
            print_error(f"{endpoint}: {info['error']}")
        elif info.get('status_code') == 200 and info.get('allow_origin') in ('*', args.origin):
            print_success(f"{endpoint}: allow-origin {info['allow_origin']}")
        else:
            print_error(f"{endpoint}: {info.get('status_code')} allow-origin {info.get('allow_origin')}")

    if result.success:
        print_success(result.message)
        return 0
    print_error(result.message)
    return 1


COMMANDS: Dict[str, Callable] = {
    'create-tables': cmd_create_tables,
    'issue-key': cmd_issue_key,
    'issue-token': cmd_issue_token,
    'check-widget': cmd_check_widget,
    'verify-api-start': cmd_verify_api_start,
    'verify-cors': cmd_verify_cors,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Widget gate operations CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    subparsers.add_parser('create-tables', help='Create database tables')

    key_parser = subparsers.add_parser('issue-key', help='Issue a widget key')
    key_parser.add_argument('--contractor-id', required=True, help='Contractor UUID')
    key_parser.add_argument('--calculator', required=True, choices=ISSUABLE_CALCULATOR_TYPES,
                            help='Calculator type')
    key_parser.add_argument('--domain', default=None, help='Lock the key to this domain')

    token_parser = subparsers.add_parser('issue-token', help='Issue a contractor bearer token')
    token_parser.add_argument('--contractor-id', required=True, help='Contractor UUID')
    token_parser.add_argument('--email', default=None, help='Contractor email claim')
    token_parser.add_argument('--minutes', type=int, default=None, help='Token lifetime in minutes')

    widget_parser = subparsers.add_parser('check-widget', help='Validate a widget as a host page would')
    widget_parser.add_argument('--api-url', default='http://localhost:8000', help='API base URL')
    widget_parser.add_argument('--key', required=True, help='Widget key')
    widget_parser.add_argument('--calculator', required=True, help='Calculator type')
    widget_parser.add_argument('--domain', default='localhost', help='Host page hostname')
    widget_parser.add_argument('--referer', default='', help='Host page referrer')

    api_parser = subparsers.add_parser('verify-api-start', help='Verify API is up')
    api_parser.add_argument('--api-url', default='http://localhost:8000', help='API base URL')

    cors_parser = subparsers.add_parser('verify-cors', help='Verify CORS preflights on widget endpoints')
    cors_parser.add_argument('--api-url', default='http://localhost:8000', help='API base URL')
    cors_parser.add_argument('--origin', default='https://customer-site.example', help='Origin to preflight from')

    return parser


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS.get(parsed_args.command)
    if not command_func:
        print_error(f"Unknown command: {parsed_args.command}")
        parser.print_help()
        return 1

    try:
        return asyncio.run(command_func(parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {str(e)}")
        if os.getenv('DEBUG'):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
