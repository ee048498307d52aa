import sys
import os
from unittest.mock import MagicMock

# Add project root to sys.path so tests can import from all modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Mock mediapipe so tests never load the real FaceMesh graph
_mp_mock = MagicMock()
sys.modules.setdefault("mediapipe", _mp_mock)
sys.modules.setdefault("mediapipe.solutions", _mp_mock.solutions)
sys.modules.setdefault("mediapipe.solutions.face_mesh", _mp_mock.solutions.face_mesh)

import pytest  # noqa: E402
from hypothesis import settings  # noqa: E402

from helpers import FakeClock  # noqa: E402

# CI profile: more examples for thorough testing
settings.register_profile("ci", max_examples=200)
# Dev profile: fewer examples for faster iteration
settings.register_profile("dev", max_examples=100)
# Default to dev profile
settings.load_profile("dev")


@pytest.fixture
def clock():
    return FakeClock()
