#!/usr/bin/env python3
"""
Voice Loop - Command Line Interface

Commands:
    run      - Start the voice assistant (default)
    devices  - List audio input and output devices
    check    - Validate configuration and device availability

Usage:
    voiceloop
    voiceloop run --listen-timeout 20
    voiceloop devices
    voiceloop check

For help on a specific command:
    voiceloop <command> --help
"""

import argparse
import sys
from typing import List, Optional

from voiceloop.config import settings
from voiceloop.logger import get_logger, init_logging

logger = get_logger(__name__)


def cmd_run(args: argparse.Namespace) -> int:
    """Start the barge-in voice assistant."""
    import asyncio
    from voiceloop.realtime.voice_agent import VoiceAssistant, print_state, print_banner

    if args.listen_timeout is not None:
        settings.conversation.listen_timeout_s = args.listen_timeout
    if args.interruption_timeout is not None:
        settings.conversation.interruption_timeout_s = args.interruption_timeout

    problems = settings.problems()
    if problems:
        print("Configuration incomplete:")
        for problem in problems:
            print(f"  - {problem}")
        print("Set the missing values in .env (see .env.example)")
        return 1

    print_banner()

    try:
        assistant = VoiceAssistant(on_state_change=print_state)
        asyncio.run(assistant.run())

        stats = assistant.stats
        print("\n" + "-" * 60)
        print("Session Statistics:")
        print(f"   Turns:          {stats['turns']}")
        print(f"   Completed:      {stats['completed']}")
        print(f"   Interruptions:  {stats['interruptions']}")
        print(f"   Errors:         {stats['errors']}")
        print()
        return 0

    except KeyboardInterrupt:
        print("\n\nVoice loop interrupted.")
        return 0
    except Exception as e:
        print(f"Voice loop failed: {e}")
        logger.exception("Voice loop error")
        return 1


def cmd_devices(args: argparse.Namespace) -> int:
    """List audio devices."""
    from voiceloop.realtime.audio_capture import list_audio_devices

    devices = list_audio_devices()
    if not devices:
        print("No audio devices found.")
        return 1

    print(f"\n{'#':>3}  {'in':>3}  {'out':>3}  name")
    print("-" * 50)
    for dev in devices:
        marks = ""
        if dev["default_input"]:
            marks += " [default input]"
        if dev["default_output"]:
            marks += " [default output]"
        print(f"{dev['index']:>3}  {dev['inputs']:>3}  {dev['outputs']:>3}  {dev['name']}{marks}")
    print()
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Validate configuration and devices."""
    from voiceloop.realtime.audio_capture import count_devices

    problems = settings.problems()

    inputs = count_devices("input")
    outputs = count_devices("output")
    if inputs == 0:
        problems.append("No audio recording devices found.")
    if outputs == 0:
        problems.append("No audio playback devices found.")

    print(f"\nEnvironment:     {settings.app_env}")
    print(f"Speech region:   {settings.speech.region or '(not set)'}")
    print(f"Chat deployment: {settings.azure.chat_deployment}")
    print(f"Input devices:   {inputs}")
    print(f"Output devices:  {outputs}")
    print("-" * 50)

    if problems:
        for problem in problems:
            print(f"  x {problem}")
        return 1

    print("  All checks passed")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="voiceloop",
        description="Barge-in voice assistant on Azure Speech and Azure OpenAI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Talk to the assistant:
    voiceloop
    voiceloop run --listen-timeout 20

  Troubleshooting:
    voiceloop devices
    voiceloop check
    voiceloop -v run
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    # No command means run
    parser.set_defaults(func=cmd_run, listen_timeout=None, interruption_timeout=None)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Start the voice assistant"
    )
    run_parser.add_argument(
        "--listen-timeout",
        type=float,
        help="Seconds to listen for a new request (default: LISTEN_TIMEOUT_S)"
    )
    run_parser.add_argument(
        "--interruption-timeout",
        type=float,
        help="Seconds to listen for an interruption while speaking (default: INTERRUPTION_TIMEOUT_S)"
    )
    run_parser.set_defaults(func=cmd_run)

    # Devices command
    devices_parser = subparsers.add_parser(
        "devices",
        help="List audio devices"
    )
    devices_parser.set_defaults(func=cmd_devices)

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Validate configuration and devices"
    )
    check_parser.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    init_logging("DEBUG" if args.verbose else None)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
