import os
import shutil
import subprocess

import pytest


def _git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def git_repo(tmp_path):
    """A committed repository with src/app.txt and README.md."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    root = str(tmp_path)
    _git(root, "init", "-q")
    _git(root, "config", "user.email", "dev@example.com")
    _git(root, "config", "user.name", "Dev")
    _git(root, "config", "commit.gpgsign", "false")
    os.makedirs(os.path.join(root, "src"))
    with open(os.path.join(root, "src", "app.txt"), "w", encoding="utf-8", newline="") as f:
        f.write("original\n")
    with open(os.path.join(root, "README.md"), "w", encoding="utf-8", newline="") as f:
        f.write("# project\n")
    _git(root, "add", ".")
    _git(root, "commit", "-q", "-m", "init")
    return root
