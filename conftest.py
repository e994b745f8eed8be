"""Global test configuration and shared fixtures."""

from __future__ import annotations

import stat
import sys
import textwrap
import typing as t
from pathlib import Path

import pytest

pytest_plugins = ("pytester",)

REPO_ROOT = Path(__file__).resolve().parent
PLUGINS_DIR = REPO_ROOT / "tests" / "plugins"

PluginExecutableFactory = t.Callable[[t.Union[str, Path]], Path]


def write_plugin_executable(script: Path, target_dir: Path) -> Path:
    """Write an executable that runs *script* with the current interpreter.

    The wrapper puts the repository root on ``sys.path`` so plugin scripts
    can import :mod:`procplug` without the package being installed.
    """
    wrapper = target_dir / script.stem
    wrapper.write_text(
        textwrap.dedent(
            f"""\
            #!{sys.executable}
            import runpy
            import sys

            sys.path.insert(0, {str(REPO_ROOT)!r})
            runpy.run_path({str(script)!r}, run_name="__main__")
            """
        ),
        encoding="utf-8",
    )
    mode = wrapper.stat().st_mode
    wrapper.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_posix: mark test as requiring POSIX executable semantics",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip tests needing POSIX shebang executables on other platforms."""
    if sys.platform != "win32":
        return
    skip = pytest.mark.skip(reason="plugin scripts rely on POSIX shebang lines")
    for item in items:
        if "requires_posix" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def plugin_executable(tmp_path: Path) -> PluginExecutableFactory:
    """Return a factory turning plugin scripts into executables.

    A plain name refers to ``tests/plugins/<name>.py``; a :class:`Path` is
    used as given.
    """

    def factory(script: str | Path) -> Path:
        source = script if isinstance(script, Path) else PLUGINS_DIR / f"{script}.py"
        return write_plugin_executable(source, tmp_path)

    return factory
