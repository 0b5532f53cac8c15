"""Pytest configuration shared by every suite.

What:
  Establish project import paths and apply a canned runtime configuration to
  every test.

Why:
  Tests must import the ``mailsync`` source tree rather than an installed
  wheel, so ``mailsync/src`` is prepended to ``sys.path``. The runtime
  configuration is cached process-wide; resetting it around every test keeps
  results independent of execution order.

How:
  Compute the project root relative to this file, inject the source directory
  into ``sys.path`` when present, and define :func:`runtime_config` which sets
  ``MAILSYNC_CONFIG_PATH`` and clears the cache before and after each test.

Interfaces:
  :func:`runtime_config` (autouse pytest fixture), :data:`CONFIG_PATH`.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailsync" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailsync.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    Args:
      monkeypatch: Pytest helper injected automatically for environment control.
    """

    monkeypatch.setenv("MAILSYNC_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()
