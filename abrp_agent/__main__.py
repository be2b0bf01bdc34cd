"""CLI entry point: ``python -m abrp_agent <command>``.

Commands mirror the in-vehicle script API::

    info                 show the telemetry that would be sent
    onetime              send the current telemetry once
    send on|off [--once] start (or stop) periodic sending
    set-token TOKEN      store the ABRP user token
    reset-config         clear the stored ABRP configuration
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog


def _configure_logging(level: str, fmt: str, command: str) -> None:
    """Route structlog through stdlib logging on stderr.

    stdout stays reserved for command output such as the ``info`` table.
    """
    import logging

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
    )
    # httpx logs full request URLs, and ours carry the user token.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abrp_agent",
        description="Forward vehicle telemetry to A Better Routeplanner",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log telemetry locally; never send to ABRP",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("info", help="Show the telemetry that would be sent")
    commands.add_parser("onetime", help="Send the current telemetry once")

    send = commands.add_parser("send", help="Start or stop periodic sending")
    send.add_argument("state", choices=["on", "off", "1", "0"])
    send.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single evaluation then exit",
    )

    set_token = commands.add_parser("set-token", help="Store the ABRP user token")
    set_token.add_argument("token")

    commands.add_parser("reset-config", help="Clear the stored ABRP configuration")
    return parser


async def _onetime(agent) -> bool:
    await agent.poster.start()
    try:
        return agent.dispatcher.onetime()
    finally:
        await agent.poster.aclose()


def main(argv: list | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Load settings from env / .env file first, then override with CLI flags.
    from abrp_agent.config import AgentSettings

    settings = AgentSettings()
    if args.dry_run is True:
        settings.dry_run = True

    _configure_logging(settings.log_level, settings.log_format, args.command)

    logger = structlog.get_logger("abrp_agent")
    version = __import__("abrp_agent").__version__

    from abrp_agent.agent_loop import build_agent, run_agent

    agent = build_agent(settings)

    if args.command == "info":
        from abrp_agent.info_formatter import format_info

        for line in format_info(agent.dispatcher.info(), version):
            print(line)
        return 0

    if args.command == "onetime":
        return 0 if asyncio.run(_onetime(agent)) else 1

    if args.command == "set-token":
        from abrp_agent.api_poster import store_user_token

        store_user_token(agent.config_store, args.token)
        logger.info("user_token_stored", path=settings.config_store_path)
        return 0

    if args.command == "reset-config":
        agent.dispatcher.reset_config()
        return 0

    # send
    if args.state in ("off", "0"):
        # A fresh process is never sending; report it like the vehicle does.
        agent.dispatcher.stop()
        return 0

    logger.info(
        "agent_starting",
        version=version,
        mode="simulation" if settings.is_simulation else "live",
        dry_run=settings.dry_run,
        once=args.once,
        scenario=settings.sim_scenario,
    )
    try:
        started = asyncio.run(run_agent(settings, once=args.once, agent=agent))
    except KeyboardInterrupt:
        logger.info("agent_interrupted")
        return 0
    return 0 if started else 1


if __name__ == "__main__":
    sys.exit(main())
