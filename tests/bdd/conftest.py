"""BDD test configuration for step diagnostics."""

from typing import Any

import pytest


@pytest.fixture
def bdd_context() -> dict[str, Any]:
    """Shared context for BDD scenarios."""
    return {"steps": [], "lines": []}
