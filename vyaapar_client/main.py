"""
Command-line entry point for the Vyaapar client.

Provides login, logout, session status and authenticated API requests for
automation and manual testing against a backend.
"""

import sys
import argparse
import asyncio
import logging
import json
from typing import Dict, Any

from vyaapar_shared.exceptions import AuthExpiredError, ConfigurationError, VyaaparError
from vyaapar_shared.logging_config import LogFormat, LogLevel, setup_logging

from vyaapar_client.app import VyaaparClient
from vyaapar_client.config import ClientConfiguration

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NOT_AUTHENTICATED = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="vyaapar-client",
        description="Vyaapar API client",
        epilog="""
Examples:
  %(prog)s send-otp 9876543210            # Request an OTP
  %(prog)s verify-otp 9876543210 123456   # Log in with the OTP
  %(prog)s status --json                  # Show session state as JSON
  %(prog)s request GET /services          # Authenticated API call
  %(prog)s logout
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--api-url", type=str, metavar="URL",
                              help="Override API base URL")
    config_group.add_argument("--mock", action="store_true",
                              help="Use the mock authentication gateway")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Print results as JSON")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    subparsers.add_parser("status", help="Show the current session")

    send_parser = subparsers.add_parser("send-otp", help="Send an OTP to a mobile number")
    send_parser.add_argument("mobile")

    verify_parser = subparsers.add_parser("verify-otp", help="Log in with an OTP")
    verify_parser.add_argument("mobile")
    verify_parser.add_argument("otp")

    provider_parser = subparsers.add_parser("login-provider", help="Log in with an identity provider token")
    provider_parser.add_argument("id_token", metavar="ID_TOKEN")

    subparsers.add_parser("logout", help="Log out and revoke the session")

    request_parser = subparsers.add_parser("request", help="Make an authenticated API request")
    request_parser.add_argument("method", type=str.upper,
                                choices=["GET", "POST", "PUT", "PATCH", "DELETE"])
    request_parser.add_argument("path")
    request_parser.add_argument("--data", type=str, metavar="JSON",
                                help="JSON request body")
    request_parser.add_argument("--param", action="append", default=[], metavar="KEY=VALUE",
                                help="Query parameter (repeatable)")

    args = parser.parse_args(argv)

    if args.command == "request":
        if args.data is not None:
            try:
                args.data = json.loads(args.data)
            except json.JSONDecodeError as e:
                parser.error(f"--data is not valid JSON: {e}")
        params = {}
        for item in args.param:
            if '=' not in item:
                parser.error(f"--param expects KEY=VALUE, got {item!r}")
            key, value = item.split('=', 1)
            params[key] = value
        args.params = params

    return args


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging based on configuration and command line arguments."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.json:
        # Keep stdout and stderr clean for machine readers
        log_level = LogLevel.CRITICAL
    else:
        log_level = LogLevel(config.get_log_level())

    log_format = LogFormat.DETAILED if args.debug else LogFormat(config.get_log_format())

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        max_file_size=config.get_log_max_size(),
        backup_count=config.get_log_backup_count(),
        audit_file=config.get_audit_log_file()
    )


def load_configuration(args) -> ClientConfiguration:
    config = ClientConfiguration(args.config)
    if args.api_url:
        config.set_override('api.base_url', args.api_url)
    if args.mock:
        config.set_override('auth.use_mock', True)
    return config


def _emit(args, payload: Dict[str, Any], text: str, stream=None) -> None:
    if args.json:
        print(json.dumps(payload, default=str))
    else:
        print(text, file=stream or sys.stdout)


def _report_error(args, error: VyaaparError) -> None:
    _emit(args, {'error': error.normalized()}, f"Error: {error.user_message}", stream=sys.stderr)


async def run_command(args, client: VyaaparClient) -> int:
    """
    Execute one subcommand against a started client.

    Returns:
        Exit code
    """
    session = client.session

    if args.command == "status":
        state = session.state
        if state.is_authenticated:
            text = f"Logged in as {state.user.name or state.user.mobile} ({state.user.id})"
        else:
            text = "Not logged in"
        _emit(args, state.to_dict(), text)
        return EXIT_OK if state.is_authenticated else EXIT_NOT_AUTHENTICATED

    if args.command == "send-otp":
        if await session.send_otp(args.mobile):
            _emit(args, {'sent': True, 'mobile': session.state.pending_identity},
                  f"OTP sent to {session.state.pending_identity}")
            return EXIT_OK
        _emit(args, {'sent': False, 'error': session.error}, f"Error: {session.error}", stream=sys.stderr)
        return EXIT_FAILURE

    if args.command in ("verify-otp", "login-provider"):
        if args.command == "verify-otp":
            outcome = await session.verify_otp(args.mobile, args.otp)
        else:
            outcome = await session.login_with_provider_token(args.id_token)

        if outcome is None:
            _emit(args, {'authenticated': False, 'error': session.error},
                  f"Login failed: {session.error}", stream=sys.stderr)
            return EXIT_FAILURE

        text = f"Logged in as {outcome.user.name or outcome.user.mobile} ({outcome.user.id})"
        if outcome.requires_profile_setup:
            text += "\nNew account: business profile setup is required"
        _emit(args, {
            'authenticated': True,
            'user': outcome.user.to_dict(),
            'requires_profile_setup': outcome.requires_profile_setup
        }, text)
        return EXIT_OK

    if args.command == "logout":
        was_authenticated = session.is_authenticated
        await session.logout()
        await session.wait_for_background_tasks()
        _emit(args, {'logged_out': True}, "Logged out" if was_authenticated else "No active session")
        return EXIT_OK

    if args.command == "request":
        if not session.is_authenticated:
            _emit(args, {'error': {'status_code': 401, 'code': 'NOT_AUTHENTICATED',
                                   'message': 'Not logged in'}},
                  "Error: not logged in", stream=sys.stderr)
            return EXIT_NOT_AUTHENTICATED
        try:
            result = await client.http.request(
                args.method, args.path, body=args.data, params=args.params or None
            )
        except AuthExpiredError as e:
            _report_error(args, e)
            return EXIT_NOT_AUTHENTICATED
        except VyaaparError as e:
            _report_error(args, e)
            return EXIT_FAILURE
        print(json.dumps(result, indent=None if args.json else 2, default=str))
        return EXIT_OK

    logger.error(f"Unknown command: {args.command}")
    return EXIT_FAILURE


async def run(args, config: ClientConfiguration) -> int:
    async with VyaaparClient(config) as client:
        return await run_command(args, client)


def main(argv=None) -> int:
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)
        config = load_configuration(args)
        configure_logging(args, config)
        return asyncio.run(run(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if not getattr(args, 'json', False):
            logger.exception("Fatal error in main")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
