#!/usr/bin/env python3

import asyncio
import argparse
import signal
import sys

import uvicorn

from config.config import DEPOSIT_SOURCES, NETWORKS, MinterConfig
from errors.exceptions import MinterError
from log_utils import setup_logging
from node.startup import startup, shutdown
from web.web import app, set_engine_context


def config_from_args(args) -> MinterConfig:
    """Environment first, then any flag given on the command line"""
    return MinterConfig(
        state_file=args.state_file,
        cardano_network=args.network,
        deposit_source=args.deposit_source,
        fixture_file=args.fixture_file,
        poll_interval=args.poll_interval,
        api_port=args.api_port,
        log_level=args.log_level,
        log_file=args.log_file,
    )


def install_signal_handlers(scheduler, logger):
    loop = asyncio.get_running_loop()

    def _request_stop(signame):
        logger.info(f"Received {signame}, stopping after current tick")
        scheduler.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig.name)
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt
            pass


async def main(args):
    config = config_from_args(args)
    logger = setup_logging(
        level=config.LOG_LEVEL,
        log_file=config.LOG_FILE or None,
        enable_console=True,
        enable_structured=not args.plain_logs
    )
    logger.info("Starting mint engine")

    engine = None
    try:
        engine = await startup(config)
        logger.info("Engine startup completed successfully")
    except MinterError as e:
        logger.critical(f"Failed to start engine: {e.message}", extra={"error_code": e.code})
        raise

    if args.once:
        try:
            report = await engine.scheduler.tick()
            logger.info(f"Single tick finished: {report}")
        finally:
            await shutdown(engine)
        return

    install_signal_handlers(engine.scheduler, logger)

    server_web = None
    if config.API_PORT:
        set_engine_context(engine.state, engine.health)
        config_web = uvicorn.Config(
            app,
            host=args.api_host,
            port=config.API_PORT,
            log_level=config.LOG_LEVEL.lower(),
            access_log=True
        )
        server_web = uvicorn.Server(config_web)
        logger.info(f"Status API configured on port {config.API_PORT}")

    async def run_scheduler():
        try:
            await engine.scheduler.run()
        finally:
            if server_web is not None:
                server_web.should_exit = True

    try:
        tasks = [run_scheduler()]
        if server_web is not None:
            tasks.append(server_web.serve())
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Engine cancelled, shutting down gracefully")
    finally:
        logger.info("Initiating shutdown")
        await shutdown(engine)
        logger.info("Shutdown completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Deposit-watching NFT mint engine')
    parser.add_argument('--state-file', type=str, default=None,
                        help='Path of the durable state file (env: STATE_FILE)')
    parser.add_argument('--network', type=str, choices=NETWORKS, default=None,
                        help='Cardano network (env: CARDANO_NETWORK)')
    parser.add_argument('--deposit-source', type=str, choices=DEPOSIT_SOURCES, default=None,
                        help='Where deposits come from (env: DEPOSIT_SOURCE)')
    parser.add_argument('--fixture-file', type=str, default=None,
                        help='JSON fixture for the fixture deposit source (env: FIXTURE_FILE)')
    parser.add_argument('--poll-interval', type=int, default=None,
                        help='Seconds between polls (env: POLL_INTERVAL)')
    parser.add_argument('--api-port', type=int, default=None,
                        help='Serve the status API on this port, 0 disables (env: API_PORT)')
    parser.add_argument('--api-host', type=str, default='127.0.0.1',
                        help='Status API bind address (default: 127.0.0.1)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Log level (env: LOG_LEVEL)')
    parser.add_argument('--log-file', type=str, default=None,
                        help='Also write logs to this file (env: LOG_FILE)')
    parser.add_argument('--plain-logs', action='store_true',
                        help='Human-readable logs instead of JSON lines')
    parser.add_argument('--once', action='store_true',
                        help='Run a single tick and exit')
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()

    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        print("Interrupted, shutting down", file=sys.stderr)
    except MinterError as e:
        print(f"Fatal: {e.message}", file=sys.stderr)
        sys.exit(1)
