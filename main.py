#!/usr/bin/env python3
"""
Session broker - OTP-protected portal login with a cached session.

Main entry point for the application.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from session_broker.core.exceptions import SessionBrokerError
from session_broker.core.logger import setup_logging
from session_broker.core.settings import BrokerSettings, get_settings
from session_broker.factory import MailboxProvider, build_orchestrator
from session_broker.services.otp.diagnostics import inspect_mailbox


async def run_serve(settings: BrokerSettings) -> None:
    """Run the HTTP service until interrupted."""
    import uvicorn

    from web.app import create_app

    logger.info(f"Starting session broker on {settings.host}:{settings.port}")
    config_uvicorn = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
    server = uvicorn.Server(config_uvicorn)
    await server.serve()


async def run_acquire(settings: BrokerSettings, force_refresh: bool = False) -> int:
    """
    Acquire one credential bundle and print it as JSON.

    Returns:
        Process exit code
    """
    mailbox = MailboxProvider(settings)
    orchestrator = build_orchestrator(settings, mailbox=mailbox)
    try:
        bundle = await orchestrator.acquire(force_refresh=force_refresh)
    except SessionBrokerError as e:
        from web.exception_handlers import error_payload

        print(json.dumps(error_payload(e).model_dump(by_alias=True, exclude_none=True), indent=2))
        return 1
    finally:
        await mailbox.close()

    print(json.dumps(bundle.to_dict(), indent=2))
    return 0


async def run_debug_otp(settings: BrokerSettings) -> int:
    """
    List recent mailbox messages and the ones matching the OTP sender.

    Returns:
        Process exit code
    """
    mailbox = MailboxProvider(settings)
    try:
        await inspect_mailbox(
            mailbox.source,
            settings.otp_sender,
            min_length=settings.otp_min_length,
            max_length=settings.otp_max_length,
        )
    except SessionBrokerError as e:
        logger.error(f"Mailbox inspection failed: {e}")
        return 1
    finally:
        await mailbox.close()
    return 0


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Session broker - OTP-protected portal login with a cached session"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL setting)",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the HTTP service (default)")
    acquire_parser = commands.add_parser("acquire", help="Log in once and print the bundle")
    acquire_parser.add_argument(
        "--force", action="store_true", help="Ignore the cached session and log in again"
    )
    commands.add_parser("debug-otp", help="Inspect the mailbox used for OTP emails")

    args = parser.parse_args(argv)

    load_dotenv()
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        args.log_level or settings.log_level,
        json_format=settings.log_json,
        diagnose=settings.is_development(),
    )

    command = args.command or "serve"
    try:
        if command == "acquire":
            sys.exit(asyncio.run(run_acquire(settings, force_refresh=args.force)))
        elif command == "debug-otp":
            sys.exit(asyncio.run(run_debug_otp(settings)))
        else:
            asyncio.run(run_serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
