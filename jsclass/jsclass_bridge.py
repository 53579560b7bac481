"""
The status bridge between a test run and the host process.

A run reports through JSON envelopes of the form `{"jstest": {...}}`:
per-test messages carry `status` and `test`; the final summary carries
`total`, `fail` and `error`. The host's Console turns them into console
lines and an exit status (0 when `fail + error == 0`, else 1).
"""
import os
import sys
import json
import asyncio
import logging
import importlib.util
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, TextIO

import pystache

logger = logging.getLogger(__name__)

ENVELOPE_KEY = "jstest"
STATUS_TEMPLATE = "[{{status}}] {{test}}"
SUMMARY_TEMPLATE = "{{total}} tests, {{fail}} failures, {{error}} errors"


def status_message(status: str, test: str, **extra: Any) -> str:
    """Envelope for one test's outcome."""
    return json.dumps({ENVELOPE_KEY: {"status": status, "test": test, **extra}})


def summary_message(total: int, fail: int, error: int) -> str:
    """Envelope for the final counts."""
    return json.dumps({ENVELOPE_KEY: {"total": total, "fail": fail, "error": error}})


def exit_status(fail: int, error: int) -> int:
    return 0 if fail + error == 0 else 1


class Console:
    """Receives envelopes from a run and prints them.

    `exit_status` stays None until a summary arrives; callers wait on it
    before exiting. Messages that are not envelopes are ignored.
    """
    def __init__(self, out: Optional[TextIO] = None):
        self.out = out if out is not None else sys.stdout
        self.exit_status: Optional[int] = None
        self._renderer = pystache.Renderer(escape=lambda u: u)

    def log(self, message: str):
        try:
            data = json.loads(message)[ENVELOPE_KEY]
        except (ValueError, KeyError, TypeError):
            logger.debug("ignoring non-envelope console message: %r", message)
            return
        if not isinstance(data, dict):
            return

        if data.get("status"):
            context = {"status": str(data["status"]).upper(), "test": data.get("test", "")}
            self._print(self._renderer.render(STATUS_TEMPLATE, context))
            if data.get("message"):
                self._print(f"  {data['message']}")
            if data.get("stack"):
                for line in str(data["stack"]).rstrip().splitlines():
                    self._print(f"    {line}")
            return

        try:
            counts: Dict[str, int] = {k: int(data[k]) for k in ("total", "fail", "error")}
        except (KeyError, TypeError, ValueError):
            logger.debug("ignoring incomplete summary: %r", data)
            return
        self._print(self._renderer.render(SUMMARY_TEMPLATE, counts))
        self.exit_status = exit_status(counts["fail"], counts["error"])

    def replay(self, lines: Iterable[str]) -> Optional[int]:
        """Feeds captured messages through `log`, returning the exit status."""
        for line in lines:
            line = line.strip()
            if line:
                self.log(line)
        return self.exit_status

    def _print(self, text: str):
        print(text, file=self.out)


def _load_namespace(path: Path) -> Dict[str, Any]:
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load tests from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return vars(module)


async def run_file(file_path: str, filters: Iterable[str] = (), console: Optional[Console] = None) -> int:
    """Runs the TestCase classes defined in a Python file and returns the exit status."""
    from jsclass.jsclass_unit import TestRunner, default_config  # local import to avoid cycle

    console = console or Console()
    p = Path(file_path)
    if not p.is_file():
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    namespace = _load_namespace(p)
    config = default_config()
    filters = list(filters)
    if filters:
        config.filters = filters
    runner = TestRunner(config, reporter=console.log)
    await runner.run(namespace)
    if console.exit_status is None:
        return 1
    return console.exit_status


def main(argv=None):
    """`jsclass-test FILE [FILTER ...]`: run a test file and exit with its status."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args or args[0].startswith("-"):
        print("usage: jsclass-test FILE [FILTER ...]", file=sys.stderr)
        raise SystemExit(2)
    level = os.environ.get("JSCLASS_LOG_LEVEL")
    if level:
        logging.basicConfig(level=level.upper())
    raise SystemExit(asyncio.run(run_file(args[0], args[1:])))


if __name__ == "__main__":
    main()
