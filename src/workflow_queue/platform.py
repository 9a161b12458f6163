"""Orchestration platform and source host collaborators.

- RunContext: identifiers of the current run, read from CircleCI's environment
- GitRepository: commit metadata from the local checkout
- CircleCIClient / CircleCIRunController: cancel or halt the current job
- GitHubClient: look up the head commit of a branch
"""

import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, override

import httpx

from .config import Config
from .errors import ConfigurationError, PlatformError

logger = logging.getLogger(__name__)

CANCELED_STATUS = "canceled"


@dataclass(frozen=True)
class RunContext:
    """Identifiers the platform supplies for the current run."""

    commit: str
    workflow_id: str
    build_num: int
    branch: str = ""
    username: str = "unknown"
    project_username: str = ""
    project_reponame: str = ""

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "RunContext":
        """Build a context from CIRCLE_* environment variables.

        Raises:
            ConfigurationError: If the commit or workflow id is not set
        """
        env = os.environ if env is None else env
        commit = env.get("CIRCLE_SHA1", "")
        workflow_id = env.get("CIRCLE_WORKFLOW_ID", "")
        if not commit or not workflow_id:
            raise ConfigurationError("CIRCLE_SHA1 and CIRCLE_WORKFLOW_ID must be set")
        try:
            build_num = int(env.get("CIRCLE_BUILD_NUM") or 0)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid CIRCLE_BUILD_NUM: {env['CIRCLE_BUILD_NUM']}") from exc
        return cls(
            commit=commit,
            workflow_id=workflow_id,
            build_num=build_num,
            branch=env.get("CIRCLE_BRANCH", ""),
            username=env.get("CIRCLE_USERNAME") or "unknown",
            project_username=env.get("CIRCLE_PROJECT_USERNAME", ""),
            project_reponame=env.get("CIRCLE_PROJECT_REPONAME", ""),
        )


class GitRepository:
    """Reads commit metadata with the git command line."""

    def __init__(self, cwd: str | None = None):
        self.cwd: str | None = cwd

    def _git(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args], cwd=self.cwd, capture_output=True, text=True, check=True
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise PlatformError(f"git {' '.join(args)} failed: {exc}") from exc
        return result.stdout.strip()

    def committed_at(self, revision: str = "HEAD") -> int:
        """Commit time of ``revision`` in epoch seconds."""
        return int(self._git("log", "-1", "--format=%ct", revision))

    def previous_commit(self, revision: str = "HEAD") -> str:
        return self._git("rev-parse", f"{revision}^")

    def commit_message(self, revision: str = "HEAD") -> str:
        return self._git("log", "-1", "--pretty=%B", revision)


def message_has_tag(message: str, tag: str) -> bool:
    """Case-insensitive substring test used to disable squashing for a commit."""
    return bool(tag) and tag.lower() in message.lower()


class RunController(Protocol):
    """Control interface for terminating the current run."""

    def request_cancel(self) -> bool:
        """Ask the platform to cancel the run; True if it reported it cancelled."""
        ...

    def is_cancelled(self) -> bool: ...

    def halt(self) -> None:
        """Stop the remaining steps of the run and mark it successful."""
        ...


class CircleCIClient:
    """Minimal client for the CircleCI v1.1 job API."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not token:
            raise ConfigurationError("CIRCLE_API_USER_TOKEN is required to cancel jobs")
        self._client: httpx.Client = httpx.Client(
            base_url=base_url or Config.circle_api_url(),
            auth=(token, ""),
            timeout=60.0,
            transport=transport,
        )

    def _request(self, method: str, path: str) -> dict[str, Any]:
        try:
            response = self._client.request(method, path)
            _ = response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PlatformError(f"CircleCI {method} {path} failed: {exc}") from exc

    @staticmethod
    def job_path(context: RunContext) -> str:
        return (
            f"/project/github/{context.project_username}/"
            f"{context.project_reponame}/{context.build_num}"
        )

    def cancel_job(self, context: RunContext) -> str:
        """Request cancellation; returns the job status CircleCI reports."""
        data = self._request("POST", f"{self.job_path(context)}/cancel")
        return str(data.get("status", ""))

    def job_status(self, context: RunContext) -> str:
        data = self._request("GET", self.job_path(context))
        return str(data.get("status", ""))

    def close(self) -> None:
        self._client.close()


class CircleCIRunController(RunController):
    """RunController for the current CircleCI job."""

    def __init__(self, client: CircleCIClient | None, context: RunContext):
        self.client: CircleCIClient | None = client
        self.context: RunContext = context

    def _api(self) -> CircleCIClient:
        if self.client is None:
            raise ConfigurationError("CIRCLE_API_USER_TOKEN is required to cancel jobs")
        return self.client

    @override
    def request_cancel(self) -> bool:
        status = self._api().cancel_job(self.context)
        logger.info("CircleCI reported job %s as %s", self.context.build_num, status or "unknown")
        return status == CANCELED_STATUS

    @override
    def is_cancelled(self) -> bool:
        return self._api().job_status(self.context) == CANCELED_STATUS

    @override
    def halt(self) -> None:
        try:
            _ = subprocess.run(["circleci-agent", "step", "halt"], check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise PlatformError(f"Failed to halt job: {exc}") from exc


class GitHubClient:
    """Looks up branch heads through the GitHub REST API."""

    def __init__(
        self,
        credentials: tuple[str, str],
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client: httpx.Client = httpx.Client(
            base_url=base_url or Config.github_api_url(),
            auth=credentials,
            timeout=60.0,
            transport=transport,
        )

    def branch_head(self, owner: str, repo: str, branch: str) -> str:
        try:
            response = self._client.get(f"/repos/{owner}/{repo}/branches/{branch}")
            _ = response.raise_for_status()
            return str(response.json()["commit"]["sha"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            raise PlatformError(f"Failed to read head of {owner}/{repo}@{branch}: {exc}") from exc

    def close(self) -> None:
        self._client.close()
