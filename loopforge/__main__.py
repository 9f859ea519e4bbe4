"""
Loop Forge command line.

    python -m loopforge [run] [options]
    python -m loopforge tasks {list,next,complete,stats} PROJECT_DIR
    python -m loopforge history {iterations,recoveries} PROJECT_DIR
"""

import sys
from typing import Optional, Sequence

from loopforge.cli import history_cli, loop_agent, tasks_cli

COMMANDS = {
    "run": loop_agent.main,
    "tasks": tasks_cli.main,
    "history": history_cli.main,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] in COMMANDS:
        return COMMANDS[args[0]](args[1:])
    return loop_agent.main(args)


if __name__ == "__main__":
    raise SystemExit(main())
