"""pytest configuration file."""

import pytest, os, logging

# Widgets are created without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that talk to a local server"
    )
    config.addinivalue_line(
        "markers", "qt: marks tests that need a QApplication"
    )

@pytest.fixture(autouse=True, scope="session")
def _silence_logs():
    os.environ["CLOUDPLAY_NO_DIAG"] = "1"
    os.environ.pop("CLOUDPLAY_STATS_TRACE", None)
    logging.getLogger("websockets").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.ERROR)
    yield
