"""Shared pytest configuration and fixtures for the bridge test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "ffmpeg: mark test as requiring an ffmpeg executable"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-ffmpeg",
        action="store_true",
        default=False,
        help="Run tests that launch a real ffmpeg process",
    )


def pytest_collection_modifyitems(config, items):
    """Skip ffmpeg tests unless --run-ffmpeg is specified."""
    if config.getoption("--run-ffmpeg"):
        return

    skip_ffmpeg = pytest.mark.skip(reason="Need --run-ffmpeg option to run")
    for item in items:
        if "ffmpeg" in item.keywords:
            item.add_marker(skip_ffmpeg)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def jpeg_frames():
    """Ten distinct fake JPEG frames of varying size."""
    from tests.infrastructure.mocks.capture_mocks import make_jpeg
    return [make_jpeg(i, size=32 + 17 * i) for i in range(10)]


@pytest.fixture
def recording_sender():
    """OSC sender double that records instead of sending."""
    from tests.infrastructure.mocks.osc_mocks import RecordingSender
    return RecordingSender()
