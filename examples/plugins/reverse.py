"""Example plugin whose ``exec`` function reverses text."""

from __future__ import annotations

from examples._models import TextInput, TextOutput
from procplug import PluginServer, RequestContext


def run(ctx: RequestContext, payload: TextInput) -> TextOutput:
    return TextOutput(text=payload.text[::-1])


if __name__ == "__main__":
    server = PluginServer()
    server.function("exec")(run)
    server.start()
