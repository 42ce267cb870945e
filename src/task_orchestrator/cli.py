from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import OrchestratorSettings, load_settings
from .logging_utils import configure_logging
from .task_engine.decomposition import parse_task_decomposition
from .task_engine.model import Task


def _settings(args: argparse.Namespace) -> OrchestratorSettings:
    config_path: Optional[Path] = Path(args.config).expanduser() if args.config else None
    settings = load_settings(config_path)
    configure_logging(args.log_level or settings.log_level)
    return settings


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'task-orchestrator[server]'\n")
        return 1

    from .server import create_app

    settings = _settings(args)
    if args.max_concurrent_tasks is not None:
        settings.max_concurrent_tasks = args.max_concurrent_tasks
    app = create_app(settings=settings)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def _parse(args: argparse.Namespace) -> int:
    if args.file == "-":
        content = sys.stdin.read()
    else:
        path = Path(args.file).expanduser()
        if not path.exists():
            sys.stderr.write(f"File not found: {path}\n")
            return 1
        content = path.read_text(encoding="utf-8")
    tasks = parse_task_decomposition(content, args.project_id)
    if args.format == "table":
        _print_task_table(tasks)
        return 0
    payload = {"tasks": [t.to_dict() for t in tasks], "total": len(tasks)}
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def _print_task_table(tasks: list[Task]) -> None:
    console = Console()
    table = Table(title=f"Parsed Tasks ({len(tasks)})", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Priority")
    table.add_column("Description", style="dim")
    for idx, task in enumerate(tasks, 1):
        desc = task.description if len(task.description) <= 60 else task.description[:57] + "..."
        table.add_row(str(idx), task.title, task.task_type.value, task.priority.value, desc)
    console.print(table)


def _config_show(args: argparse.Namespace) -> int:
    settings = _settings(args)
    data = dataclasses.asdict(settings)
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Task orchestrator CLI")
    parser.add_argument("--config", default=None, help="YAML config file (default: $TASK_ORCHESTRATOR_CONFIG)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    server = subparsers.add_parser("server", help="Start the HTTP API and scheduling loop")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.add_argument("--max-concurrent-tasks", default=None, type=int)
    server.set_defaults(func=_server)

    parse = subparsers.add_parser("parse", help="Parse a planning document into draft tasks")
    parse.add_argument("file", help="Path to the document, or - for stdin")
    parse.add_argument("--project-id", default=None)
    parse.add_argument("--format", default="json", choices=["json", "table"])
    parse.set_defaults(func=_parse)

    config = subparsers.add_parser("config", help="Inspect configuration")
    config_sub = config.add_subparsers(dest="config_cmd", required=True)
    cshow = config_sub.add_parser("show", help="Print the resolved settings")
    cshow.set_defaults(func=_config_show)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
