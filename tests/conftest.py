"""Shared test fixtures."""

import pytest

from .factories import make_episode, make_movie


@pytest.fixture
def movie():
    return make_movie()


@pytest.fixture
def episode():
    return make_episode()
