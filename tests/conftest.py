import shlex
import sys

import pytest


def python_command(code: str) -> str:
    """Shell-style command line running ``code`` with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


@pytest.fixture
def py():
    return python_command
