#!/usr/bin/env python3
"""
Eventsmith Runner Script

Turns one natural-language request into calendar operations.

Usage:
    python run.py "lunch with John tomorrow 12-1pm"
    python run.py "what's on this week" --intent get_event
    python run.py "move it to 3pm" --intent update_event --event-id abc123
    python run.py "..." --dry-run              # In-memory calendar, nothing is written
    python run.py --check-config               # Validate configuration
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))


def check_config(config_path=None) -> bool:
    """Check configuration and print status."""
    from pydantic import ValidationError

    from eventsmith.core.config import get_config, get_env_settings

    print("\n" + "=" * 60)
    print("Eventsmith Configuration Check")
    print("=" * 60 + "\n")

    try:
        cfg = get_config(config_path)
    except ValidationError as e:
        print(f"❌ Invalid settings file:\n{e}")
        return False

    settings = get_env_settings()
    print(f"Timezone:        {cfg.calendar.timezone}")
    print(f"Calendar:        {cfg.calendar.calendar_id}")
    print(f"Models:          {', '.join(cfg.llm.models)}")
    print(f"Create attempts: {cfg.creation.max_attempts}")
    print(f"Groq:            {'✅ configured' if settings.groq_api_key else '⚪ not set'}")
    print(f"Ollama:          {'✅ ' + (settings.ollama_base_url or cfg.llm.ollama_base_url) if (settings.ollama_base_url or cfg.llm.ollama_base_url) else '⚪ not set'}")

    credentials = settings.google_calendar_credentials_path or cfg.calendar.credentials_file
    if Path(credentials).exists():
        print(f"Credentials:     ✅ {credentials}")
    else:
        print(f"Credentials:     ⚠️ {credentials} not found (use --dry-run)")

    if not settings.groq_api_key and not (settings.ollama_base_url or cfg.llm.ollama_base_url):
        print("\n⚠️ No completion provider configured; only rule-based extraction will run.")
    return True


async def run_request(args) -> int:
    from eventsmith.core.config import get_config, get_env_settings
    from eventsmith.core.llm import create_completion_service
    from eventsmith.core.logger import setup_logging
    from eventsmith.scheduling import AgentRequest, CalendarAgent, RawMessage
    from eventsmith.tools.calendar import create_calendar_store

    cfg = get_config(args.config)
    settings = get_env_settings()
    setup_logging(cfg)

    completion = create_completion_service(
        groq_api_key=settings.groq_api_key,
        ollama_base_url=settings.ollama_base_url or cfg.llm.ollama_base_url,
        models=cfg.llm.models,
        temperature=cfg.llm.temperature,
        max_tokens=cfg.llm.max_tokens,
        timeout=cfg.llm.timeout,
    )
    store = create_calendar_store(
        cfg.calendar,
        credentials_path=settings.google_calendar_credentials_path,
        dry_run=args.dry_run,
    )
    agent = CalendarAgent.from_config(store, completion, cfg)

    now = datetime.now()
    request = AgentRequest(
        intent=args.intent,
        payload=RawMessage(text=args.text, event_id=args.event_id),
        user_id=args.user,
        current_date=args.date or now.strftime("%Y-%m-%d"),
        current_time=args.time or now.strftime("%H:%M"),
    )

    response = await agent.handle(request)
    print(response.message_to_user)
    if response.event_id:
        print(f"\nEvent ID: {response.event_id}")
    return 0 if response.success else 1


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Eventsmith - natural language to calendar events")
    parser.add_argument("text", nargs="?", default="", help="The request, e.g. 'dentist friday 3pm'")
    parser.add_argument(
        "--intent",
        default="create_event",
        choices=["create_event", "get_event", "update_event", "delete_event"],
        help="What to do with the request",
    )
    parser.add_argument("--date", type=str, help="Current date (YYYY-MM-DD), defaults to today")
    parser.add_argument("--time", type=str, help="Current time (HH:MM), defaults to now")
    parser.add_argument("--event-id", type=str, help="Event to update or delete")
    parser.add_argument("--user", type=str, default="cli", help="User id recorded in logs")
    parser.add_argument("--dry-run", action="store_true", help="Use an in-memory calendar")
    parser.add_argument("--config", type=str, help="Path to configuration file")
    parser.add_argument("--check-config", action="store_true", help="Validate configuration and exit")

    args = parser.parse_args()

    if args.check_config:
        ok = check_config(args.config)
        print("\n✅ Configuration is valid." if ok else "\n❌ Configuration has errors.")
        sys.exit(0 if ok else 1)

    if not args.text and args.intent in ("create_event", "get_event"):
        parser.error("a request text is required")

    sys.exit(asyncio.run(run_request(args)))


if __name__ == "__main__":
    main()
