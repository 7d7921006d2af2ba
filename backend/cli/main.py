"""
Command-line roleplay session.

    roleplay-live --list
    roleplay-live --scenario sales-1
    roleplay-live --instruction "You are a helpful narrator" --voice Kore

Human-facing output (status, errors, volume meter) goes to stderr;
stdout carries the JSONL event log.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv

from config import AppConfig
from observability.logger import set_enabled
from scenarios.catalog import Scenario, ScenarioError, find_scenario, load_scenarios
from session.live_client import LiveClient


METER_WIDTH = 30


def _meter(level: float) -> str:
    filled = min(int(level / 100.0 * METER_WIDTH * 4), METER_WIDTH)
    return "[" + "#" * filled + " " * (METER_WIDTH - filled) + "]"


def _print_catalog(scenarios: tuple[Scenario, ...]) -> None:
    for s in scenarios:
        print(f"{s.id:<16} {s.difficulty.value:<7} {s.voice:<8} {s.title}")
        if s.description:
            print(f"{'':<16} {s.description}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="roleplay-live", description="Real-time voice roleplay trainer.")
    ap.add_argument("--list", action="store_true", help="List available scenarios and exit.")
    ap.add_argument("--scenario", default=None, help="Scenario id to run.")
    ap.add_argument("--instruction", default=None, help="Ad-hoc system instruction (instead of --scenario).")
    ap.add_argument("--voice", default=None, help="Prebuilt voice name (overrides the scenario voice).")
    ap.add_argument("--scenarios-file", default=None, help="JSON catalog (defaults to SCENARIOS_PATH).")
    ap.add_argument("--quiet-meter", action="store_true", help="Do not draw the microphone volume meter.")
    return ap


async def run_session(
    client: LiveClient,
    *,
    system_instruction: str,
    voice_id: str | None,
    show_meter: bool = True,
) -> int:
    """Run one session until remote close, error or cancellation. Returns the exit code."""
    done = asyncio.Event()
    failed = False

    def on_status(status: str) -> None:
        print(f"\n[live] {status}", file=sys.stderr)
        if status == "disconnected":
            done.set()

    def on_error(message: str) -> None:
        nonlocal failed
        failed = True
        print(f"\n[live] error: {message}", file=sys.stderr)
        done.set()

    def on_volume(level: float) -> None:
        if show_meter:
            sys.stderr.write(f"\r[mic] {_meter(level)}")
            sys.stderr.flush()

    client.on_status_change = on_status
    client.on_error = on_error
    client.on_volume_level = on_volume

    try:
        await client.connect(system_instruction, voice_id)
        await done.wait()
    finally:
        await client.disconnect()

    return 1 if failed else 0


async def _amain(args: argparse.Namespace, config: AppConfig, scenarios: tuple[Scenario, ...]) -> int:
    if args.instruction:
        instruction = args.instruction
        voice = args.voice
    else:
        scenario = find_scenario(scenarios, args.scenario or scenarios[0].id)
        print(f"[live] scenario: {scenario.title} (AI plays: {scenario.role})", file=sys.stderr)
        instruction = scenario.system_instruction
        voice = args.voice or scenario.voice

    client = LiveClient(config)
    return await run_session(
        client,
        system_instruction=instruction,
        voice_id=voice,
        show_meter=not args.quiet_meter,
    )


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = AppConfig.load_from_env()
    set_enabled(config.enable_json_logs)

    try:
        scenarios = load_scenarios(args.scenarios_file or config.scenarios_path)
    except ScenarioError as e:
        print(f"[live] {e}", file=sys.stderr)
        return 1

    if args.list:
        _print_catalog(scenarios)
        return 0

    try:
        return asyncio.run(_amain(args, config, scenarios))
    except ScenarioError as e:
        print(f"[live] {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n[live] interrupted", file=sys.stderr)
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
