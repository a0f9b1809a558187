import pytest

from .helpers import FakeTimer


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def auth_file(tmp_path):
    return tmp_path / "auth.json"
