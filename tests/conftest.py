"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import os
import sys
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local covreach package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of covreach modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("covreach"):
        del sys.modules[module_name]


@pytest.fixture(autouse=True)
def _isolated_config(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Keep user-level config and COVREACH__ env vars out of every test."""
    import covreach.config.loader as loader

    monkeypatch.setattr(
        loader, "GLOBAL_CONFIG_PATH", tmp_path_factory.mktemp("home") / "config.yaml"
    )
    for key in list(os.environ):
        if key.upper().startswith("COVREACH__"):
            monkeypatch.delenv(key)
