"""Shared pytest fixtures for npvm tests."""

import json

import pytest
import structlog


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _route_structlog_to_stdlib():
    """Keep log events off stdout so CLI output stays parseable; pytest captures them."""
    structlog.configure(
        processors=[structlog.stdlib.add_log_level, structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def project_dir(tmp_path):
    """A minimal JS project with one runtime, one dev and one peer dependency."""
    manifest = {
        "name": "demo-app",
        "version": "1.0.0",
        "dependencies": {"lodash": "^4.17.21"},
        "devDependencies": {"jest": "^29.0.0"},
        "peerDependencies": {"react": "^18.0.0"},
    }
    (tmp_path / "package.json").write_text(json.dumps(manifest))
    return tmp_path
