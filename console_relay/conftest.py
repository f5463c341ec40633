import sys
import tempfile
import time
from pathlib import Path

import pytest

# Add repo root to path so the package resolves without installation
_repo_root = Path(__file__).parent.parent
_repo_root_str = str(_repo_root)


def pytest_configure(config):
    if _repo_root_str not in sys.path:
        sys.path.insert(0, _repo_root_str)


@pytest.fixture
def sock_address():
    # macOS has a short AF_UNIX path limit; tmp_path can be too long. Use /tmp.
    base = Path("/tmp") if Path("/tmp").exists() else Path(tempfile.gettempdir())
    path = base / f"console-relay-{time.time_ns()}.sock"
    yield str(path)
    try:
        path.unlink()
    except OSError:
        pass
