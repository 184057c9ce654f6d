import shutil

import pytest

from auto_task.shell import ShellEngine

requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash is not installed")


@pytest.fixture
def shell(tmp_path):
    engine = ShellEngine(str(tmp_path))
    engine.start()
    yield engine
    engine.stop()
