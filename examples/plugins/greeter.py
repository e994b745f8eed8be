"""Example plugin serving a validated ``greet`` function.

Run with ``--stop-after SECONDS`` to have it stop serving on its own, which
the supervision example uses to trigger the host's health signal.
"""

from __future__ import annotations

import argparse
import logging
import threading

from examples._models import GreetInput, GreetOutput
from procplug import PluginServer, RequestContext, Validator

logger = logging.getLogger("greeter")

server = PluginServer()


@server.function("greet", validator=Validator(GreetInput))
def greet(ctx: RequestContext, payload: GreetInput) -> GreetOutput:
    logger.info("Greeting %s for %s", payload.name, ctx.client_address)
    return GreetOutput(greeting=f"hello, {payload.name}!")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--stop-after", type=float, default=None)
    options = parser.parse_args()
    # stdout carries the port handshake; log to stderr.
    logging.basicConfig(level=logging.INFO)

    if options.stop_after is not None:
        timer = threading.Timer(options.stop_after, server.stop)
        timer.daemon = True
        timer.start()
    server.start()


if __name__ == "__main__":
    main()
