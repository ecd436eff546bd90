"""
CLI entrypoint for the Dash voice session.

Usage examples:
  - Talk to Dash (mic → assistant → speech):
      python -m dash_voice.main run --language zu

  - Override providers:
      python -m dash_voice.main run --speech whisper --synthesis local_tts

  - Configuration and discovery:
      python -m dash_voice.main config
      python -m dash_voice.main validate
      python -m dash_voice.main list-providers

While a session runs, type 'm' + Enter to toggle mute, 'r' to resume
listening and 'q' to quit.
"""

import asyncio
import json
from argparse import ArgumentParser
from pathlib import Path
from typing import Any, Dict

from . import config as voice_config
from .factory import ProviderFactory
from .models.data_models import SessionSnapshot
from .orchestrator import ConversationOrchestrator
from .utils.logging_config import setup_logging

STATE_ICONS = {
    'idle': '💤',
    'listening': '👂',
    'transcribing': '📝',
    'thinking': '🤔',
    'speaking': '🗣️ ',
    'waiting': '⏸️ ',
    'error': '❌',
}


def _build_config(args) -> Dict[str, Any]:
    """Create configuration with optional provider overrides."""
    if any([args.speech, args.synthesis, args.dispatcher]):
        voice_config.set_providers(
            speech=args.speech,
            synthesis=args.synthesis,
            dispatcher=args.dispatcher,
        )
    config = voice_config.get_voice_config()
    if args.no_fallback:
        config['fallback_speech'] = None
        config['fallback_synthesis'] = None
    return config


def _format_snapshot(snapshot: SessionSnapshot) -> str:
    icon = STATE_ICONS.get(snapshot.state.value, '•')
    line = f"{icon} {snapshot.state.value}"
    if snapshot.muted:
        line += " (muted)"
    if snapshot.partial_transcript:
        line += f" | you: {snapshot.partial_transcript}"
    if snapshot.assistant_text and snapshot.state.value == 'speaking':
        line += f" | dash: {snapshot.assistant_text[:80]}"
    if snapshot.error_message:
        line += f" | {snapshot.error_message}"
    return line


async def _print_snapshots(orchestrator: ConversationOrchestrator):
    queue = orchestrator.subscribe()
    last_line = None
    try:
        while True:
            snapshot = await queue.get()
            line = _format_snapshot(snapshot)
            if line != last_line:
                print(line)
                last_line = line
    finally:
        orchestrator.unsubscribe(queue)


async def _read_commands(orchestrator: ConversationOrchestrator):
    loop = asyncio.get_running_loop()
    while True:
        try:
            command = (await loop.run_in_executor(None, input)).strip().lower()
        except (EOFError, KeyboardInterrupt):
            return
        if command in ('q', 'quit', 'exit'):
            return
        if command in ('m', 'mute'):
            await orchestrator.toggle_mute()
        elif command in ('r', 'resume'):
            if not await orchestrator.resume_listening():
                print("⚠️  Nothing to resume")
        elif command in ('s', 'status'):
            print(json.dumps(orchestrator.get_status(), indent=2, default=str))


async def cmd_run(args) -> int:
    config = _build_config(args)
    try:
        orchestrator = ProviderFactory.create_orchestrator(config)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    printer = asyncio.create_task(_print_snapshots(orchestrator))
    try:
        if not await orchestrator.open_session(args.language):
            print("❌ Could not open voice session")
            return 1
        print("🎙️  Listening. Commands: m=mute, r=resume, s=status, q=quit")
        await _read_commands(orchestrator)
        return 0
    finally:
        await orchestrator.shutdown()
        printer.cancel()
        await asyncio.gather(printer, return_exceptions=True)


async def cmd_config(args) -> int:
    config = _build_config(args)
    redacted = json.loads(json.dumps(config, default=str))
    for section in redacted.values():
        if isinstance(section, dict) and isinstance(section.get('config'), dict):
            for key in ('api_key', 'token'):
                if section['config'].get(key):
                    section['config'][key] = '***'
    print(json.dumps(redacted, indent=2))
    return 0


async def cmd_validate(args) -> int:
    _build_config(args)
    voice_config.print_config_summary()
    return 0 if voice_config.validate_environment()["valid"] else 1


async def cmd_list_providers(args) -> int:
    print(json.dumps(ProviderFactory.get_available_providers(), indent=2))
    return 0


def _add_common_args(p):
    p.add_argument("--speech", help="Override speech provider")
    p.add_argument("--synthesis", help="Override synthesis provider")
    p.add_argument("--dispatcher", help="Override dispatcher")
    p.add_argument("--no-fallback", action="store_true", help="Disable fallback providers")
    p.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING)")
    p.add_argument("--log-file", help="Also write logs to this file")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="dash_voice")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run a voice session")
    _add_common_args(p_run)
    p_run.add_argument("--language", help="Language code (en, af, zu, xh, nso)")
    p_run.set_defaults(func=cmd_run)

    p_config = sub.add_parser("config", help="Print the assembled configuration")
    _add_common_args(p_config)
    p_config.set_defaults(func=cmd_config)

    p_validate = sub.add_parser("validate", help="Validate environment and configuration")
    _add_common_args(p_validate)
    p_validate.set_defaults(func=cmd_validate)

    p_list = sub.add_parser("list-providers", help="List available providers")
    _add_common_args(p_list)
    p_list.set_defaults(func=cmd_list_providers)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, Path(args.log_file) if args.log_file else None)
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
