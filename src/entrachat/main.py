"""
entrachat entry point.

This file handles startup concerns (arg-parsing, settings, logging, sign-in, MCP connection) and
then hands the console over to the interactive session loop.
"""

import argparse
import asyncio
import logging
import os
import sys

from entrachat.agent.agent_loop import Conversation
from entrachat.agent.diagnostics import report_fatal_error
from entrachat.agent.planner_interface import load_chat_client
from entrachat.agent.tool_executor import ToolInvoker
from entrachat.auth.token_provider import load_token_provider
from entrachat.client.cli import run_session
from entrachat.common import (
    RULE,
    AnsiColors,
    colored_print,
)
from entrachat.config import (
    ConfigurationError,
    Settings,
    settings,
)
from entrachat.remote.tool_source import (
    TRANSPORTS,
    McpToolSource,
    print_tool_catalog,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Keep SDK chatter out of the console unless something goes wrong
    for noisy in ("httpx", "httpcore", "openai", "mcp", "msal", "azure"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _ensure_data_dir(cfg: Settings) -> None:
    data_dir = cfg.data_path
    data_dir.mkdir(parents=True, exist_ok=True)
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        raise ConfigurationError(f"Data directory is not writable: {data_dir}")


def _print_startup_info(cfg: Settings) -> None:
    colored_print("=== Microsoft MCP Server for Enterprise - Python Client ===\n", AnsiColors.BLUE)
    if cfg.LLM_PROVIDER.lower() == "openai":
        print(f"Using OpenAI model: {cfg.OPENAI_MODEL}")
    else:
        print(f"Connecting to Azure OpenAI: {cfg.AZURE_OPENAI_ENDPOINT}")
        print(f"Using model deployment: {cfg.AZURE_OPENAI_DEPLOYMENT_NAME}")
    print(f"MCP Server: {cfg.MCP_SERVER_URL} ({cfg.MCP_TRANSPORT})")
    if cfg.AZURE_CLIENT_ID:
        print(f"Using app registration: {cfg.AZURE_CLIENT_ID}")
    print()


async def _run(cfg: Settings) -> None:
    chat_client = load_chat_client(cfg.LLM_PROVIDER, cfg)
    colored_print(f"✓ Chat client initialized ({cfg.LLM_PROVIDER})", AnsiColors.GREEN)

    print("\nAttempting to connect to MCP Server...")
    print(RULE)
    print("Note: MCP Server requires delegated (user) permissions.\n")
    token = await load_token_provider(cfg).get_token()

    print("\n[Step 2] Connecting to MCP server...")
    async with McpToolSource(
        cfg.MCP_SERVER_URL, token, transport=cfg.MCP_TRANSPORT, timeout=cfg.MCP_TIMEOUT
    ) as source:
        colored_print("✓ MCP client connected\n", AnsiColors.GREEN)
        tools = await source.list_tools()
        print_tool_catalog(tools)

        conversation = Conversation(chat_client, ToolInvoker(tools, source), tools)
        await run_session(conversation)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the entrachat console client.

    Parses the command line, initializes logging, signs in, connects to the MCP server and runs
    the interactive session.  Startup failures are explained and end the process with status 1.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        description="Ask questions about your Microsoft Entra tenant through an MCP server"
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        type=str.lower,
        default=settings.MCP_TRANSPORT,
        help="MCP transport (default from env: %(default)s)",
    )
    parser.add_argument(
        "--provider",
        choices=["azure", "openai"],
        type=str.lower,
        default=settings.LLM_PROVIDER,
        help="Chat completion provider (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    settings.MCP_TRANSPORT = args.transport
    settings.LLM_PROVIDER = args.provider

    _init_logging(settings.LOG_LEVEL)
    logger.debug("Settings: %s", settings.model_dump(exclude={"AZURE_CLIENT_SECRET",
                                                               "AZURE_OPENAI_API_KEY",
                                                               "OPENAI_API_KEY",
                                                               "MCP_ACCESS_TOKEN"}))

    try:
        _print_startup_info(settings)
        _ensure_data_dir(settings)
        settings.validate_required()
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except Exception as exc:  # pylint: disable=broad-except
        report_fatal_error(exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
