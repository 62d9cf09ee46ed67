import os as _os
import sys

import pytest

# Ensure project root is importable (so `import autolb` and `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from autolb.settings import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every controller-owned file into tmp_path."""
    return Settings(
        pid_file=str(tmp_path / "haproxy.pid"),
        sock_file=str(tmp_path / "haproxy.sock"),
        config_file=str(tmp_path / "etc" / "haproxy.cfg"),
        template_file=str(tmp_path / "haproxy.tmpl"),
        restart_cooldown_s=0,
        start_grace_s=0,
        check_time_s=1,
    )
