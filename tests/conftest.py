"""Pytest fixtures shared by hm-remote tests."""

import pytest

from hm_remote import session as session_mod


@pytest.fixture(autouse=True)
def reset_active_session():
    """Ensure no session leaks between tests."""
    session_mod._active_session = None
    yield
    session_mod._active_session = None
