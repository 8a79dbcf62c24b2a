"""
Mirrors the sales JSON file to a GitHub repository so it survives redeploys.

The sync is a fixed sequence of named steps. Each step runs one or more git
commands and reports success or failure; a required step that fails stops
the run, an optional one is logged and skipped. Nothing here raises to the
caller: the worst outcome is a stale remote copy.

The remote URL embeds the access token, so every piece of git output is
redacted before it is logged or returned.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from config import PACIFIC

logger = logging.getLogger(__name__)

GIT_USER_NAME = "Policy Pulse Bot"
GIT_USER_EMAIL = "bot@policypulse.local"


@dataclass
class StepResult:
    name: str
    ok: bool
    output: str = ""
    required: bool = True


@dataclass
class SyncReport:
    steps: List[StepResult] = field(default_factory=list)
    committed: bool = False

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps if step.required)

    @property
    def warnings(self) -> List[str]:
        return [step.name for step in self.steps if not step.ok and not step.required]


class GitMirror:
    """Commits and pushes one data file to `owner/repo` on GitHub."""

    def __init__(self, repo_dir: Path, data_file: Path, token: str, owner: str, repo: str,
                 branch: str = "main", timeout: float = 60.0):
        self.repo_dir = Path(repo_dir)
        self.data_file = Path(data_file)
        self.token = token
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.timeout = timeout
        self._lock = asyncio.Lock()

    @property
    def remote_url(self) -> str:
        return f"https://{self.token}@github.com/{self.owner}/{self.repo}.git"

    @property
    def display_remote(self) -> str:
        return f"github.com/{self.owner}/{self.repo}"

    def redact(self, text: str) -> str:
        if self.token:
            text = text.replace(self.token, "***")
        return text

    async def _git(self, *args: str) -> StepResult:
        """Run one git command in the repo directory, bounded by the timeout."""
        name = " ".join(args[:2])
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": "echo"}
        try:
            proc = await asyncio.create_subprocess_exec(
                "git", *args,
                cwd=str(self.repo_dir),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            return StepResult(name, False, f"git unavailable: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return StepResult(name, False, f"timed out after {self.timeout:.0f}s")

        output = (stdout or b"").decode("utf-8", errors="replace") + (stderr or b"").decode("utf-8", errors="replace")
        return StepResult(name, proc.returncode == 0, self.redact(output.strip()))

    async def _first_success(self, name: str, *commands: Sequence[str], required: bool = True) -> StepResult:
        """Try each command in turn, stopping at the first one that succeeds."""
        result = StepResult(name, False, "no command ran", required)
        for command in commands:
            result = await self._git(*command)
            if result.ok:
                break
        return StepResult(name, result.ok, result.output, required)

    # --- Steps ---

    async def ensure_repo(self) -> StepResult:
        lock_file = self.repo_dir / ".git" / "index.lock"
        try:
            lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove stale git index lock: %s", e)
        await self._git("config", "--global", "--add", "safe.directory", str(self.repo_dir))
        return await self._first_success(
            "ensure-repo",
            ("rev-parse", "--is-inside-work-tree"),
            ("init",),
        )

    async def configure_identity(self) -> StepResult:
        name = await self._git("config", "user.name", GIT_USER_NAME)
        email = await self._git("config", "user.email", GIT_USER_EMAIL)
        await self._git("config", "commit.gpgsign", "false")
        return StepResult("configure-identity", name.ok and email.ok, name.output or email.output, required=False)

    async def configure_remote(self) -> StepResult:
        return await self._first_success(
            "configure-remote",
            ("remote", "set-url", "origin", self.remote_url),
            ("remote", "add", "origin", self.remote_url),
        )

    async def fetch(self) -> StepResult:
        result = await self._git("fetch", "origin", self.branch)
        return StepResult("fetch", result.ok, result.output, required=False)

    async def merge(self) -> StepResult:
        checkout = await self._first_success(
            "checkout",
            ("checkout", "-B", self.branch),
            ("checkout", "-b", self.branch),
            required=False,
        )
        if not checkout.ok:
            return StepResult("merge", False, checkout.output, required=False)
        await self._git("branch", f"--set-upstream-to=origin/{self.branch}", self.branch)
        # The local file is authoritative; conflicting remote edits to it are overridden.
        result = await self._git(
            "pull", "--no-rebase", "--allow-unrelated-histories",
            "-X", "ours", "origin", self.branch,
        )
        return StepResult("merge", result.ok, result.output, required=False)

    async def stage(self) -> StepResult:
        if not self.data_file.exists():
            return StepResult("stage", False, f"{self.data_file.name} does not exist")
        result = await self._git("add", "-f", str(self.data_file))
        return StepResult("stage", result.ok, result.output)

    async def commit_if_changed(self) -> StepResult:
        diff = await self._git("diff", "--cached", "--quiet")
        if diff.ok:
            return StepResult("commit", True, "nothing to commit")
        stamp = datetime.now(PACIFIC).strftime("%Y-%m-%d %I:%M %p %Z")
        result = await self._git("commit", "-m", f"Auto-update sales data - {stamp}")
        if not result.ok and "nothing to commit" in result.output.lower():
            return StepResult("commit", True, "nothing to commit")
        return StepResult("commit", result.ok, result.output)

    async def push(self) -> StepResult:
        result = await self._git("push", "origin", f"HEAD:{self.branch}")
        return StepResult("push", result.ok, result.output)

    # --- Pipeline ---

    async def sync(self) -> SyncReport:
        """Run every step in order. Overlapping calls wait for the previous run to finish."""
        async with self._lock:
            logger.info("Starting git sync to %s", self.display_remote)
            report = SyncReport()
            steps = (
                self.ensure_repo,
                self.configure_identity,
                self.configure_remote,
                self.fetch,
                self.merge,
                self.stage,
                self.commit_if_changed,
                self.push,
            )
            for step in steps:
                result = await step()
                report.steps.append(result)
                if result.name == "commit" and result.ok and result.output != "nothing to commit":
                    report.committed = True
                if result.ok:
                    logger.debug("git step %s ok", result.name)
                elif result.required:
                    logger.error("git step %s failed: %s", result.name, result.output)
                    break
                else:
                    logger.warning("git step %s failed, continuing: %s", result.name, result.output)

            if report.ok:
                logger.info("Git sync finished%s.", " with a new commit" if report.committed else "")
            return report


def mirror_from_settings(settings) -> Optional[GitMirror]:
    """Build the mirror from configuration, or None when no token/repository is set."""
    if not settings.mirror_enabled():
        logger.info("GITHUB_TOKEN/GITHUB_OWNER/GITHUB_REPO not set; git mirror disabled.")
        return None
    repo_dir = Path(settings.PROJECT_ROOT)
    data_file = Path(settings.data_file())
    if not data_file.resolve().is_relative_to(repo_dir.resolve()):
        logger.warning(
            "Data file %s is outside the git work tree %s; git mirror disabled. "
            "Set DATA_DIR inside PROJECT_ROOT to enable it.", data_file, repo_dir,
        )
        return None
    return GitMirror(
        repo_dir=repo_dir,
        data_file=data_file,
        token=settings.GITHUB_TOKEN,
        owner=settings.GITHUB_OWNER,
        repo=settings.GITHUB_REPO,
        branch=settings.GITHUB_BRANCH,
        timeout=settings.GIT_TIMEOUT_SECONDS,
    )
