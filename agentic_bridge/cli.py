#!/usr/bin/env python3
"""
agentic-bridge command line.

  agentic-bridge serve [--host H] [--port P]
  agentic-bridge run <project_dir> -t "task" [-p provider] [--write]
"""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .agent_session import AgentSession, StopReason
from .config import BridgeConfig, load_config, load_dotenv
from .errors import BridgeError
from .provider_ir import CanonicalResponse
from .workflow import FileSystemSnapshot, NpmBuildRunner, PackageJsonBuildVerifier, TurnOutcome


def _print_turn(turn: int, response: CanonicalResponse, outcome: Optional[TurnOutcome]) -> None:
    if response.text:
        print(f"[turn {turn}] {response.text}")
    for action in response.actions:
        print(f"[turn {turn}] -> {action.name}")
    if outcome is not None:
        print(f"[turn {turn}] state={outcome.state.value} retries={outcome.retry_count}")
        for violation in outcome.violations:
            print(f"[turn {turn}] protocol violation: {violation.message}")


def _serve(args: argparse.Namespace, config: BridgeConfig) -> int:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def _run(args: argparse.Namespace, config: BridgeConfig) -> int:
    project = Path(args.project)
    if not project.is_dir():
        print(f"Error: project directory '{project}' not found")
        return 1
    if args.max_turns:
        config = replace(config, session=replace(config.session, max_turns=args.max_turns))
    if args.approve_plans:
        config = replace(config, session=replace(config.session, require_plan_approval=True))

    before = FileSystemSnapshot.from_directory(str(project))
    verifier = PackageJsonBuildVerifier(NpmBuildRunner() if args.npm_build else None)
    session = AgentSession(
        config,
        args.provider,
        file_system=before,
        build_verifier=verifier,
        on_turn=_print_turn,
    )

    result = session.submit(args.task)
    while result.stop_reason is StopReason.AWAITING_APPROVAL:
        answer = input("Approve plan? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            session.reject_plan()
            print("Plan rejected.")
            return 1
        result = session.approve_plan()

    print(f"Stopped: {result.stop_reason.value} (state={result.state.value}, retries={result.retry_count})")
    if result.violations:
        print(f"{len(result.violations)} protocol violation(s)")

    if args.write:
        touched = result.file_system.write_to(str(project), previous=before)
        for path in touched:
            print(f"  {path}")
    else:
        changed = sorted(set(result.file_system.items()) ^ set(before.items()))
        if changed:
            print("Changes not written (pass --write to apply):")
            for path in sorted({p for p, _ in changed}):
                print(f"  {path}")
    return 0 if result.stop_reason in (StopReason.FINISHED, StopReason.CHATTED) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentic-bridge", description="Canonical tool-calling bridge for coding agents")
    parser.add_argument("-c", "--config", help="Path to agent configuration YAML (default: $AGENTIC_BRIDGE_CONFIG)")
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env)")
    parser.add_argument("--log-level", default=None, help="Logging level (default from config)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    run = sub.add_parser("run", help="Drive one task against a project directory")
    run.add_argument("project", help="Project directory used as the file-system snapshot")
    run.add_argument("-t", "--task", required=True, help="The user request")
    run.add_argument("-p", "--provider", help="Provider id (default from config)")
    run.add_argument("-m", "--max-turns", type=int, help="Maximum model turns")
    run.add_argument("--approve-plans", action="store_true", help="Pause for approval after each plan")
    run.add_argument("--npm-build", action="store_true", help="Run npm install/build for run_build_and_lint")
    run.add_argument("--write", action="store_true", help="Write the resulting snapshot back to the project")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(args.env_file)
    try:
        config = load_config(args.config)
    except BridgeError as e:
        print(f"Error: {e}")
        return 1
    args.log_level = (args.log_level or config.logging.level).upper()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if args.command == "serve":
            return _serve(args, config)
        return _run(args, config)
    except KeyboardInterrupt:
        print("\nOperation interrupted by user")
        return 130
    except BridgeError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
