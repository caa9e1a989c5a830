"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a SQLite file in the test's
temporary directory, and local git repositories that stand in for a
provider remote. While the production system uses PostgreSQL, these tests
use SQLite for fast, isolated testing of query logic.

Git fixtures drive the real ``git`` binary and are skipped when it is not
installed.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import AsyncGenerator

import git
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from deploybot.config import DatabaseConfig
from deploybot.database.connection import get_engine, get_session_factory
from deploybot.database.models import Base
from deploybot.database.models.repository import BranchConfig, GitProvider
from deploybot.database.queries.repository import create_repository


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine for testing.

    A database file is used instead of ``:memory:`` so that concurrent
    sessions opened by background deployment tasks see the same data.

    Yields:
        Configured AsyncEngine instance.
    """
    test_engine = get_engine(
        DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'deploybot.db'}")
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, built like the application's."""
    return get_session_factory(engine)


class GitRemote:
    """A local repository acting as the provider remote.

    Attributes:
        path: Working tree of the remote repository.
        repo: GitPython handle on the repository.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        path.mkdir(parents=True)
        self.repo = git.Repo.init(path)
        self.commit("README.md", "# api\n", "Initial commit")
        self.repo.git.branch("-M", "main")

    @property
    def url(self) -> str:
        return self.path.as_uri()

    @property
    def head(self) -> str:
        return self.repo.head.commit.hexsha

    def commit(self, filename: str, content: str, message: str) -> str:
        """Write ``filename`` and commit it on the current branch."""
        (self.path / filename).write_text(content)
        self.repo.git.add(filename)
        self.repo.git.commit("-m", message)
        return self.head

    def create_branch(self, name: str) -> None:
        self.repo.git.branch(name)

    def rewrite_head(self, filename: str, content: str, message: str) -> str:
        """Replace the last commit so the branch no longer fast-forwards."""
        self.repo.git.reset("--hard", "HEAD~1")
        return self.commit(filename, content, message)


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Commit identity for test repositories, independent of user config."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Deploy Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "deploy-test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Deploy Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "deploy-test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def git_remote(tmp_path: Path, git_identity: None) -> GitRemote:
    """Remote repository with one commit on ``main``.

    Returns:
        GitRemote whose ``url`` is a file:// URL.
    """
    remote = GitRemote(tmp_path / "remote" / "api")
    remote.commit("app.txt", "v1\n", "Add app")
    return remote


@pytest.fixture
def deploy_root(tmp_path: Path) -> Path:
    """Base directory for deployment checkouts."""
    return tmp_path / "deployments"


@pytest_asyncio.fixture
async def registered_repository(session_factory, git_remote):
    """Repository row pointing at ``git_remote`` with ``main`` configured."""
    async with session_factory() as session:
        return await create_repository(
            session,
            name="api",
            git_url=git_remote.url,
            provider=GitProvider.GITHUB,
            branches=[
                BranchConfig(
                    branch="main",
                    discord_channel_id="123456789",
                    build_command="cat app.txt",
                    deploy_command='echo "deployed to $NODE_ENV"',
                    environment="production",
                )
            ],
        )
