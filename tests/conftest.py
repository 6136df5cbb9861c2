import pytest

from poses import make_landmarks


@pytest.fixture
def upright():
    return make_landmarks()
