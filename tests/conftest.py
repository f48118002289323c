"""Shared pytest fixtures for aider-acp tests."""

import logging
from pathlib import Path
from typing import Generator

import pytest

from aider_acp.config import AgentConfig


# ============================================================================
# Test Data Fixtures
# ============================================================================


@pytest.fixture
def startup_output() -> str:
    """Banner aider prints when it starts."""
    return """Aider v0.86.1
Main model: gemini/gemini-2.5-flash with diff-fenced edit format
Weak model: gemini/gemini-2.0-flash
Git repo: .git with 42 files
Repo-map: using 4096 tokens, auto refresh
"""


@pytest.fixture
def diff_output() -> str:
    """Reply containing a SEARCH/REPLACE edit in diff format."""
    return """I'll rename the greeting.

src/app.py
```python
<<<<<<< SEARCH
print("hello")
=======
print("hello, world")
>>>>>>> REPLACE
```

Tokens: 1.2k sent, 85 received. Cost: $0.0012 message, $0.0040 session.
"""


@pytest.fixture
def udiff_output() -> str:
    """Reply containing a unified diff."""
    return """Here is the change.

```diff
--- a/src/app.py
+++ b/src/app.py
@@ -1,2 +1,2 @@
-x = 1
+x = 2
 y = 3
```
"""


# ============================================================================
# Agent Fixtures
# ============================================================================


@pytest.fixture
def agent_config() -> AgentConfig:
    """Configuration with the default model list."""
    return AgentConfig(aider_command="aider", model="gemini/gemini-2.5-flash")


@pytest.fixture
def mock_client():
    """Fake ACP client that allows every permission request once."""
    from tests.mocks.mock_client import MockClient

    return MockClient()


@pytest.fixture
def process_factory():
    """Factory producing scripted aider processes."""
    from tests.mocks.mock_process import MockProcessFactory

    return MockProcessFactory()


@pytest.fixture
def agent(agent_config: AgentConfig, mock_client, process_factory):
    """Agent wired to the fake client and fake processes."""
    from aider_acp.agent import AiderAcpAgent

    acp_agent = AiderAcpAgent(config=agent_config, process_factory=process_factory)
    acp_agent.on_connect(mock_client)
    return acp_agent


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Working directory for a session."""
    work = tmp_path / "project"
    work.mkdir()
    return work


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def capture_logs(tmp_path: Path) -> Generator[Path, None, None]:
    """Capture test logs to a file."""
    log_file = tmp_path / "test.log"

    handler = logging.FileHandler(log_file)
    handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)

    logger = logging.getLogger("aider_acp")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield log_file

    logger.removeHandler(handler)
    handler.close()


# ============================================================================
# Test Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Add markers based on test location."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
