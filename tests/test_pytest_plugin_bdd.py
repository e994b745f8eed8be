"""Behavioural test of the procplug pytest plug-in, expressed with pytest-bdd."""

from __future__ import annotations

import textwrap
import typing as t
from pathlib import Path

import pytest
from pytest_bdd import given, scenario, then, when

if t.TYPE_CHECKING:  # pragma: no cover - used for type checking only
    from _pytest.pytester import Pytester, RunResult

    from conftest import PluginExecutableFactory

pytestmark = pytest.mark.requires_posix

FEATURES_DIR = Path(__file__).resolve().parent.parent / "features"


@scenario(
    str(FEATURES_DIR / "pytest_plugin.feature"), "plugin_client fixture basic usage"
)
def test_plugin_client_fixture() -> None:
    """Bind scenario steps for the pytest plugin."""
    pass


TEST_CODE = textwrap.dedent(
    """
    pytest_plugins = ("procplug.pytest_plugin",)

    PLUGIN = {plugin!r}
    OPENED = []


    def test_example(plugin_client):
        client = plugin_client(PLUGIN)
        OPENED.append(client)
        assert client.config.health_check_timeout == 7.5
        hello = client.function("hello")
        assert hello.call({{"name": "world"}}) == {{"greeting": "hello, world!"}}


    def test_closed_after_teardown():
        assert len(OPENED) == 1
        assert OPENED[0].connection is None
        assert OPENED[0].pid is None
    """
)


@given(
    "a temporary test file using the plugin_client fixture",
    target_fixture="test_file",
)
def create_test_file(
    pytester: Pytester, plugin_executable: PluginExecutableFactory
) -> Path:
    """Write the example test file pointing at the hello plugin."""
    plugin = str(plugin_executable("hello"))
    return pytester.makepyfile(TEST_CODE.format(plugin=plugin))


@given("an ini file setting the health check timeout")
def create_ini(pytester: Pytester) -> None:
    """Configure the fixture through pytest's ini file."""
    pytester.makeini(
        """
        [pytest]
        procplug_health_check_timeout = 7.5
        """
    )


@when("I run pytest on the file", target_fixture="result")
def run_pytest(pytester: Pytester, test_file: Path) -> RunResult:
    """Run the inner pytest instance."""
    return pytester.runpytest(str(test_file))


@then("the run should pass")
def assert_success(result: RunResult) -> None:
    """Assert that both tests passed."""
    result.assert_outcomes(passed=2)
