"""Local demo executor for CLI backend integration tests.

Appends the first prompt line to ``echo_agent.log`` inside the workspace and
reports the change the way real coding agents do, so the runner's output
scraping sees a modified file.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run one deterministic demo cycle."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--workspace", required=True)
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--fail", action="store_true")
    args = parser.parse_args(argv)

    workspace = Path(args.workspace)
    prompt = Path(args.prompt_file).read_text("utf-8")
    headline = next((line for line in prompt.splitlines() if line.strip()), "")
    cycle = os.getenv("AGENT_RELAY_CYCLE", "?")

    log_path = workspace / "echo_agent.log"
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(f"cycle {cycle}: {headline}\n")
    print(f"File modified: {log_path.name}")
    if args.fail:
        print("Error: demo failure requested")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
