"""End-to-end push and clone through the helper with a real git installation."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from git_remote_rpc.config import ServerConfig
from git_remote_rpc.rpc import RECEIVE_PACK, UPLOAD_PACK
from tests.conftest import running_tcp_server, tcp_url

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

_PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _git(*args: str, cwd: Path, env: dict[str, str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", "-c", "init.defaultBranch=main", *args],
        cwd=cwd,
        env=env,
        check=True,
        capture_output=True,
        text=True,
        timeout=60,
    )


@pytest.fixture
def git_env(tmp_path: Path) -> dict[str, str]:
    """Environment in which git finds git-remote-rpc and ignores user config."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    helper = bin_dir / "git-remote-rpc"
    helper.write_text(f"#!{sys.executable}\nfrom git_remote_rpc.cli import helper_main\nhelper_main()\n")
    helper.chmod(0o755)
    env = dict(os.environ)
    env.update(
        {
            "PATH": f"{bin_dir}{os.pathsep}{env.get('PATH', '')}",
            "PYTHONPATH": f"{_PROJECT_ROOT}{os.pathsep}{env.get('PYTHONPATH', '')}",
            "HOME": str(tmp_path),
            "GIT_CONFIG_NOSYSTEM": "1",
            "GIT_TERMINAL_PROMPT": "0",
        }
    )
    return env


def test_push_then_clone(tmp_path: Path, git_env: dict[str, str]) -> None:
    """A commit pushed over the tunnel can be cloned back over the tunnel."""
    served = tmp_path / "served"
    served.mkdir()
    _git("init", "--bare", "project.git", cwd=served, env=git_env)

    work = tmp_path / "work"
    work.mkdir()
    _git("init", cwd=work, env=git_env)
    (work / "README").write_text("hello through the tunnel\n")
    _git("add", "README", cwd=work, env=git_env)
    _git("-c", "user.name=Test", "-c", "user.email=test@example.com", "commit", "-m", "initial", cwd=work, env=git_env)

    config = ServerConfig(
        repository_root=served,
        commands={UPLOAD_PACK: ["git", "upload-pack"], RECEIVE_PACK: ["git", "receive-pack"]},
    )
    with running_tcp_server(config.build_server()) as srv:
        url = tcp_url(srv, "project.git")
        _git("push", url, "HEAD:refs/heads/main", cwd=work, env=git_env)
        _git("clone", url, "clone", cwd=tmp_path, env=git_env)

    assert (tmp_path / "clone" / "README").read_text() == "hello through the tunnel\n"


def test_clone_missing_repository(tmp_path: Path, git_env: dict[str, str]) -> None:
    """Cloning a repository that does not exist fails with git's own message."""
    config = ServerConfig(
        repository_root=tmp_path,
        commands={UPLOAD_PACK: ["git", "upload-pack"], RECEIVE_PACK: ["git", "receive-pack"]},
    )
    with running_tcp_server(config.build_server()) as srv:
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            _git("clone", tcp_url(srv, "missing.git"), "clone", cwd=tmp_path, env=git_env)
    assert "git-remote-rpc:" in exc_info.value.stderr
