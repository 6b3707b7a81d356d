"""
Command-line interface for Trainer-Agent.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="trainer-agent",
        description="Trainer-Agent - tool-calling agent runtime for a personal trainer app",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent from the terminal")
    chat_parser.add_argument("--user", required=True, help="User id")
    chat_parser.add_argument("--session", default=None, help="Session id (default: most recent)")
    chat_parser.add_argument("message", nargs="?", help="Message to send (interactive when omitted)")

    session_parser = subparsers.add_parser("session", help="Inspect sessions")
    session_subparsers = session_parser.add_subparsers(dest="session_command")

    list_parser = session_subparsers.add_parser("list", help="List a user's sessions")
    list_parser.add_argument("--user", required=True, help="User id")
    list_parser.add_argument("--limit", type=int, default=10)

    show_parser = session_subparsers.add_parser("show", help="Show session state and usage")
    show_parser.add_argument("session_id", help="Session id")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Initialize (create .env, database)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat(args.user, args.session, args.message))
    elif args.command == "session":
        if args.session_command == "list":
            asyncio.run(list_sessions(args.user, args.limit))
        elif args.session_command == "show":
            asyncio.run(show_session(args.session_id))
        else:
            session_parser.print_help()
    elif args.command == "config":
        show_config(args.check)
    elif args.command == "init":
        asyncio.run(init_project())
    else:
        parser.print_help()


def run_server(host: str | None, port: int | None, reload: bool) -> None:
    """Run the FastAPI server."""
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    logger.info("Starting Trainer-Agent server", host=host, port=port)

    uvicorn.run(
        "trainer_agent.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


def print_turn(result) -> None:
    """Print what the user would see for a finished turn."""
    for action in result.actions:
        output = action.output
        if output.tool == "message_notify_user":
            suffix = f"  [artifact {output.artifact_id}]" if output.artifact_id else ""
            print(f"🤖 {output.message}{suffix}")
        elif output.tool == "message_ask_user":
            print(f"🤖 {output.question}")
            for option in output.options:
                print(f"   - {option}")
        else:
            marker = "✓" if action.success else "✗"
            print(f"   {marker} {action.tool_name}: {action.result}")

    if result.error:
        print(f"⚠️  {result.outcome.value}: {result.error}")


async def chat(user_id: str, session_id: str | None, message: str | None) -> None:
    """Send one message, or run an interactive chat loop."""
    from .runtime import build_agent_loop

    loop = await build_agent_loop()

    if message:
        result = await loop.run_turn(user_id, message, session_id)
        print_turn(result)
        return

    print("Type a message (Ctrl-D to quit).")
    while True:
        try:
            line = input("> ").strip()
        except EOFError:
            print()
            break
        if not line:
            continue
        result = await loop.run_turn(user_id, line, session_id)
        session_id = result.session_id
        print_turn(result)


async def list_sessions(user_id: str, limit: int) -> None:
    """List a user's sessions."""
    from .agent import SessionStore
    from .models import init_database

    settings = get_settings()
    store = SessionStore(await init_database(settings.database_url))
    sessions = await store.list_sessions(user_id, limit=limit)

    if not sessions:
        print("No sessions.")
        return

    print(f"\n{'Session':<38} {'Status':<10} {'Events':<8} {'Updated':<25}")
    print("-" * 82)
    for session in sessions:
        updated = session.updated_at.strftime("%Y-%m-%d %H:%M:%S") if session.updated_at else "N/A"
        print(f"{session.id:<38} {session.status:<10} {session.last_sequence + 1:<8} {updated:<25}")


async def show_session(session_id: str) -> None:
    """Show session state, recent events and usage."""
    from .agent import SessionStore
    from .errors import SessionNotFoundError
    from .models import init_database

    settings = get_settings()
    store = SessionStore(await init_database(settings.database_url))

    try:
        session = await store.get_session(session_id)
    except SessionNotFoundError as e:
        logger.error("Session not found", session_id=session_id)
        print(f"❌ {e}")
        sys.exit(1)

    events = await store.get_recent_events(session_id, limit=settings.recent_events_limit)
    usage = await store.usage_summary(session_id)

    print(json.dumps(
        {
            "session": session.to_dict(),
            "recent_events": [event.to_dict() for event in events],
            "usage": usage,
        },
        indent=2,
        default=str,
        ensure_ascii=False,
    ))


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== Trainer-Agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  API Token: {mask(settings.api_token)}")

    print("\nLLM Providers:")
    print(f"  Agent: {settings.agent_provider} / {settings.agent_model}")
    selector = f"{settings.selector_provider} / {settings.selector_model}" if settings.selector_enabled else "(disabled)"
    print(f"  Selector: {selector}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nAgent Loop:")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Model Timeout: {settings.model_timeout_seconds}s")
    print(f"  Tool Timeout: {settings.tool_timeout_seconds}s")

    print("\nData:")
    print(f"  Database URL: {settings.database_url}")
    print(f"  User Data: {settings.user_data_path or '(empty in-memory store)'}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        if not settings.get_llm_config("agent").api_key:
            errors.append(f"{settings.agent_provider.upper()}_API_KEY is required for the agent model")
        if settings.selector_enabled and not settings.get_llm_config("selector").api_key:
            errors.append(f"{settings.selector_provider.upper()}_API_KEY is required for the selector model")

        if not settings.api_token:
            warnings.append("API_TOKEN is not set - the HTTP API accepts unauthenticated requests")

        if settings.user_data_path and not Path(settings.user_data_path).exists():
            errors.append(f"USER_DATA_PATH does not exist: {settings.user_data_path}")

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before starting")


async def init_project() -> None:
    """Create a default .env and the database."""
    from .models import init_database

    env_file = Path(".env")

    if not env_file.exists():
        env_content = """# Trainer-Agent Configuration

# LLM API Keys (set the ones your providers need)
ANTHROPIC_API_KEY=
# OPENAI_API_KEY=
# OPENROUTER_API_KEY=

# Main agent model
AGENT_PROVIDER=anthropic
AGENT_MODEL=claude-sonnet-4-5

# Context selector (cheap model)
SELECTOR_ENABLED=true
SELECTOR_PROVIDER=anthropic
SELECTOR_MODEL=claude-haiku-4-5

# Agent loop
MAX_ITERATIONS=10
MODEL_TIMEOUT_SECONDS=60
TOOL_TIMEOUT_SECONDS=30

# HTTP API
HOST=0.0.0.0
PORT=8080
# API_TOKEN=

# Data
DATABASE_URL=sqlite+aiosqlite:///./data/trainer_agent.db
# USER_DATA_PATH=./data/users.json
"""
        env_file.write_text(env_content)
        print(f"✅ Created {env_file}")
    else:
        print(f"ℹ️  {env_file} already exists")

    settings = get_settings()
    await init_database(settings.database_url)
    print(f"✅ Database ready at {settings.database_url}")

    print("\n=== Next Steps ===")
    print("1. Edit .env and add your ANTHROPIC_API_KEY")
    print("2. Run: trainer-agent chat --user me \"log a 3x10 pushup set\"")
    print("3. Or serve the API: trainer-agent serve")


if __name__ == "__main__":
    main()
