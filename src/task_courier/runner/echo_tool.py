"""Local stand-in for the external tool, used by tests and dry runs."""

from __future__ import annotations

import argparse
import json
import signal
import subprocess
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the invocation as JSON, with scripted exit code, output and delay."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", required=True)
    parser.add_argument("--project-dir", required=True)
    parser.add_argument("--task", required=True)
    parser.add_argument("--output", default="text")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stdout", dest="stdout_text", default=None)
    parser.add_argument("--stderr", dest="stderr_text", default="")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--touch-after-sleep", default=None)
    parser.add_argument("--ignore-sigterm", action="store_true")
    parser.add_argument("--stubborn-child-marker", default=None)
    args = parser.parse_args(argv)

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if args.stubborn_child_marker:
        _spawn_stubborn_child(args.project_dir, args.stubborn_child_marker)

    if args.stdout_text is None:
        payload = {
            "mode": args.mode,
            "project_dir": args.project_dir,
            "task": args.task,
            "cwd": str(Path.cwd()),
        }
        sys.stdout.write(json.dumps(payload) if args.output == "json" else args.task)
    else:
        sys.stdout.write(args.stdout_text)
    sys.stdout.flush()
    if args.stderr_text:
        sys.stderr.write(args.stderr_text)
        sys.stderr.flush()

    if args.sleep > 0:
        time.sleep(args.sleep)
        if args.touch_after_sleep:
            Path(args.touch_after_sleep).write_text("finished", "utf-8")
    return args.exit_code


def _spawn_stubborn_child(project_dir: str, marker: str) -> None:
    """Start a descendant that ignores SIGTERM and writes ``marker`` if it survives."""

    subprocess.Popen(  # noqa: S603
        [
            sys.executable,
            "-m",
            "task_courier.runner.echo_tool",
            "--mode",
            "child",
            "--project-dir",
            project_dir,
            "--task",
            "child",
            "--ignore-sigterm",
            "--sleep",
            "1.5",
            "--touch-after-sleep",
            marker,
        ],
    )


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
