"""
Local git publisher: commits the staged site into a working copy on disk.
"""

import logging
import os
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from staticgen.config import GitLocalPublisherSettings
from staticgen.errors import PublishError, ValidationError
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult
from staticgen.validation import is_valid_branch_name

from .local import clear_directory, copy_contents


logger = logging.getLogger(__name__)

GIT_LOCATIONS = (
    "/usr/bin/git",
    "/usr/local/bin/git",
    "/opt/homebrew/bin/git",
    "/opt/local/bin/git",
)
GIT_DIRS = tuple(os.path.dirname(p) for p in GIT_LOCATIONS)


def find_git(candidates: Sequence[str] = GIT_LOCATIONS) -> Optional[str]:
    """First whitelisted git binary whose real path stays in a trusted directory."""
    for candidate in candidates:
        if not os.access(candidate, os.X_OK):
            continue
        real = os.path.realpath(candidate)
        if os.path.basename(real) != "git":
            continue
        if any(os.path.dirname(real).startswith(d) for d in GIT_DIRS):
            return real
    return None


def sanitize_git_error(output: str) -> str:
    """Strip paths, credentials and addresses from git output before logging it."""
    if not output:
        return ""
    output = re.sub(r"https?://[^@\s]+@[^\s]+", "https://[credentials]@[remote]", output)
    output = re.sub(r"(?<![\w\]:/])/[^\s:]+", "[path]", output)
    output = re.sub(r"[A-Z]:\\[^\s:]+", "[path]", output, flags=re.I)
    output = re.sub(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}", "[ip]", output)
    return output.strip()


class GitLocalPublisher(Publisher):
    """Copies the staged site into a git work tree, commits and optionally pushes."""

    name = "Local git"

    def __init__(self, settings: GitLocalPublisherSettings, log: ProgressSink, git: Optional[str] = None):
        self.settings = settings
        self.work_dir = Path(settings.work_dir)
        self.branch = settings.branch
        self.log = log
        self._git = git

    def _run(self, git: str, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [git, *args],
            cwd=self.work_dir,
            capture_output=True,
            text=True,
            check=False,
        )

    @staticmethod
    def _output(result: subprocess.CompletedProcess) -> str:
        return " ".join((result.stdout + result.stderr).split())

    def validate(self) -> str:
        """Check everything that can fail before the work tree is touched. Returns the git path."""
        if not is_valid_branch_name(self.branch):
            raise ValidationError(f"Invalid branch name: {self.branch!r}")
        git = self._git or find_git()
        if not git:
            raise ValidationError("git executable not found")
        if not self.work_dir.is_dir():
            raise ValidationError(f"Git work directory does not exist: {self.work_dir}")
        if not (self.work_dir / ".git").is_dir():
            raise ValidationError(f"Not a git repository: {self.work_dir}")
        return git

    def _checkout(self, git: str) -> None:
        # an unborn branch is reported as current too
        current = self._run(git, "branch", "--show-current").stdout.strip()
        if current == self.branch:
            return
        exists = self._run(git, "rev-parse", "--verify", self.branch).returncode == 0

        if exists:
            args: List[str] = ["checkout", self.branch]
        elif self._run(git, "rev-parse", "HEAD").returncode == 0:
            args = ["checkout", "-b", self.branch]
        else:
            args = ["checkout", "--orphan", self.branch]

        result = self._run(git, *args)
        if result.returncode != 0:
            raise PublishError(f"Failed to switch to branch {self.branch}: {self._output(result)}")

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        git = self.validate()

        try:
            clear_directory(self.work_dir, keep=(".git",))
            count = copy_contents(Path(staging_root), self.work_dir)
        except OSError as e:
            raise PublishError(f"Failed to update work tree: {e}") from e

        self._checkout(git)

        result = self._run(git, "add", "-A")
        if result.returncode != 0:
            raise PublishError(f"git add failed: {self._output(result)}")

        message = message or f"Static site update: {datetime.now():%Y-%m-%d %H:%M:%S}"
        result = self._run(git, "commit", "-m", message)
        if result.returncode != 0:
            if "nothing to commit" not in result.stdout + result.stderr:
                raise PublishError(f"git commit failed: {self._output(result)}")
            self.log.log("Local git: no changes")
            return PublishResult(publisher=self.name, skipped=count, detail="no changes")

        pushed = ""
        if self.settings.push_remote:
            result = self._run(git, "push", "origin", self.branch)
            if result.returncode != 0:
                error = sanitize_git_error(result.stdout + result.stderr)
                self.log.log(f"Push to remote failed{': ' + error if error else ''}", "error")
            else:
                pushed = " (pushed)"

        self.log.log(f"Local git output complete: {self.branch}{pushed}")
        return PublishResult(publisher=self.name, uploaded=count, batches=1, detail=self.branch + pushed)
