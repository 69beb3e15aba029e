"""
Command-line entry point: run one operator session against a local browser.

Configuration comes from the environment (see OperatorConfig.from_env); the
prompt is the joined command-line arguments.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from .agent import AgentState, OperatorAgent
from .config import OperatorConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("browser_operator")

EXIT_CODES = {
    AgentState.COMPLETED: 0,
    AgentState.FAILED: 1,
    AgentState.STOPPED: 130,
}

__all__ = ["EXIT_CODES", "main", "run_prompt"]


def _print_status(status: str) -> None:
    print(status, file=sys.stderr, flush=True)


async def run_prompt(prompt: str, config: OperatorConfig | None = None) -> int:
    """Run a single session and return the process exit code."""
    agent = OperatorAgent(config or OperatorConfig.from_env())
    agent.add_status_listener(_print_status)
    loop = asyncio.get_running_loop()
    stopping: set[asyncio.Task[None]] = set()

    def _on_interrupt() -> None:
        logger.info("interrupt received, stopping operator")
        task = loop.create_task(agent.stop())
        stopping.add(task)
        task.add_done_callback(stopping.discard)

    # add_signal_handler is unavailable on some platforms.
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    try:
        result = await agent.start(prompt)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
    print(result.status, flush=True)
    return EXIT_CODES.get(result.state, 1)


def main() -> None:
    """Main entry point for the operator CLI."""
    prompt = " ".join(sys.argv[1:]).strip()
    if not prompt:
        print("usage: browser-operator <prompt>", file=sys.stderr)
        sys.exit(2)
    try:
        code = asyncio.run(run_prompt(prompt))
    except KeyboardInterrupt:
        code = EXIT_CODES[AgentState.STOPPED]
    sys.exit(code)


if __name__ == "__main__":
    main()
