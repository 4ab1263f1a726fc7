"""Version tag creation and push.

The tag stage creates a tag named exactly by the release version at the
current revision and pushes it to the configured remote. The remote tag
namespace is shared and append-only from the pipeline's point of view:
nothing here ever deletes, moves or force-pushes a tag.

Failure modes are kept distinct:

- an existing tag raises :class:`TagAlreadyExistsError` (a
  :class:`ConcurrencyConflictError`), which the ``warn`` policy downgrades to
  a warning when the tag already points at the current revision;
- a refused push raises :class:`PushRejectedError`, which is always fatal.
"""

from __future__ import annotations

import base64
import logging
from enum import Enum
from pathlib import Path

from release_pipeline.commands import CommandResult, output_tail, raise_for_status, run_command
from release_pipeline.config import DEFAULT_REMOTE, DEFAULT_TAG_CONFLICT_POLICY, TAG_CONFLICT_POLICIES
from release_pipeline.exceptions import (
    ConfigurationError,
    PushRejectedError,
    TagAlreadyExistsError,
)
from release_pipeline.locking import VersionLock
from release_pipeline.stages.version import ReleaseVersion

logger = logging.getLogger(__name__)

_EXISTS_MARKERS = ("already exists", "(already exists)", "[rejected]")


class GitClient:
    """Thin asynchronous wrapper over the ``git`` executable.

    Parameters
    ----------
    repo_root : Path
        Working tree the commands run in.
    token : str | None, optional
        Token authorising pushes over HTTPS. Sent as an extra HTTP header and
        redacted from every log line.
    timeout : float | None, optional
        Upper bound for each git call.
    """

    def __init__(
        self, repo_root: Path, *, token: str | None = None, timeout: float | None = None
    ) -> None:
        self.repo_root = Path(repo_root)
        self.timeout = timeout
        self._token = token or None
        self._auth_header: str | None = None
        if self._token:
            basic = base64.b64encode(f"x-access-token:{self._token}".encode()).decode()
            self._auth_header = f"AUTHORIZATION: basic {basic}"

    @property
    def secrets(self) -> tuple[str, ...]:
        if not self._token or not self._auth_header:
            return ()
        return (self._token, self._auth_header.split()[-1])

    def _auth_env(self) -> dict[str, str]:
        # git reads these as `-c` pairs, keeping the header out of argv.
        if self._auth_header is None:
            return {}
        return {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraheader",
            "GIT_CONFIG_VALUE_0": self._auth_header,
        }

    async def _git(self, *args: str, auth: bool = False) -> CommandResult:
        return await run_command(
            ["git", *args],
            cwd=self.repo_root,
            env=self._auth_env() if auth else None,
            timeout=self.timeout,
            secrets=self.secrets,
        )

    async def head_revision(self) -> str:
        result = await self._git("rev-parse", "HEAD")
        raise_for_status(result, "Unable to resolve HEAD", stage="tag")
        return result.stdout.strip()

    async def local_tag_revision(self, tag: str) -> str | None:
        """Return the commit a local tag points at, or ``None``."""
        result = await self._git("rev-parse", "-q", "--verify", f"refs/tags/{tag}^{{commit}}")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def remote_tag_revision(self, remote: str, tag: str) -> str | None:
        """Return the commit ``tag`` points at on ``remote``, or ``None``.

        Annotated tags are peeled so the value is always a commit id.
        """
        ref = f"refs/tags/{tag}"
        result = await self._git("ls-remote", "--tags", remote, ref, f"{ref}^{{}}", auth=True)
        raise_for_status(
            result, f"Unable to list tags on '{remote}'", stage="tag", secrets=self.secrets
        )
        plain: str | None = None
        for line in result.stdout.splitlines():
            sha, _, name = line.partition("\t")
            if name.strip() == f"{ref}^{{}}":
                return sha.strip()
            if name.strip() == ref:
                plain = sha.strip()
        return plain

    async def create_tag(self, tag: str) -> None:
        """Create a lightweight tag at HEAD."""
        result = await self._git("tag", tag)
        if result.ok:
            return
        if "already exists" in result.output:
            raise TagAlreadyExistsError(tag, context={"where": "local"})
        raise_for_status(result, f"Unable to create tag '{tag}'", stage="tag")

    async def push_tag(self, remote: str, tag: str) -> None:
        result = await self._git("push", remote, f"refs/tags/{tag}", auth=True)
        if result.ok:
            return
        text = result.output
        if any(marker in text for marker in _EXISTS_MARKERS):
            raise TagAlreadyExistsError(
                tag,
                context={"where": "remote", "output_tail": output_tail(result, self.secrets)},
            )
        raise PushRejectedError(
            f"Push of tag '{tag}' to '{remote}' was rejected (Return code: {result.returncode})",
            context={"remote": remote, "output_tail": output_tail(result, self.secrets)},
        )


class TagOutcome(str, Enum):
    CREATED = "created"
    ALREADY_PRESENT = "already_present"


class TagPublisher:
    r"""Create and push the release tag, at most once per version.

    Parameters
    ----------
    git : GitClient
        Version control collaborator (a fake with the same coroutine methods
        in tests).
    remote : str, optional
        Remote that receives the tag.
    conflict_policy : str, optional
        ``"error"`` (default) raises on an existing tag. ``"warn"`` logs a
        warning and succeeds when the existing tag points at the current
        revision.
    lock_dir : Path | None, optional
        Directory for the per-version tag lock. ``None`` disables locking.

    Examples
    --------
    >>> publisher = TagPublisher(GitClient(Path(".")))
    >>> # await publisher.publish(ReleaseVersion("2.3.0"))
    """

    def __init__(
        self,
        git: GitClient,
        *,
        remote: str = DEFAULT_REMOTE,
        conflict_policy: str = DEFAULT_TAG_CONFLICT_POLICY,
        lock_dir: Path | None = None,
        lock_wait: float = 0.0,
    ) -> None:
        if conflict_policy not in TAG_CONFLICT_POLICIES:
            raise ConfigurationError(
                f"Unknown tag conflict policy '{conflict_policy}'",
                context={"allowed": list(TAG_CONFLICT_POLICIES)},
            )
        self.git = git
        self.remote = remote
        self.conflict_policy = conflict_policy
        self.lock_dir = Path(lock_dir) if lock_dir is not None else None
        self.lock_wait = lock_wait

    async def publish(self, version: ReleaseVersion) -> TagOutcome:
        """Create the tag ``version`` at HEAD and push it to the remote.

        Returns
        -------
        TagOutcome
            ``CREATED`` for a fresh tag, ``ALREADY_PRESENT`` when the ``warn``
            policy accepted an identical existing tag.

        Raises
        ------
        TagAlreadyExistsError
            If the tag exists and the policy does not accept it.
        PushRejectedError
            If the remote refuses the push.
        RunInProgressError
            If another invocation is tagging the same version.
        """
        if self.lock_dir is None:
            return await self._publish(version)
        async with VersionLock(self.lock_dir, f"tag-{version}", wait=self.lock_wait):
            return await self._publish(version)

    async def _publish(self, version: ReleaseVersion) -> TagOutcome:
        tag = version.value
        head = await self.git.head_revision()
        remote_rev = await self.git.remote_tag_revision(self.remote, tag)
        if remote_rev is not None:
            return self._existing_tag(tag, remote_rev, head, where="remote")

        local_rev = await self.git.local_tag_revision(tag)
        if local_rev is not None:
            if local_rev != head:
                raise TagAlreadyExistsError(
                    tag, context={"where": "local", "revision": local_rev, "head": head}
                )
            logger.warning(
                "Tag %s exists locally at HEAD but not on %s; pushing it", tag, self.remote
            )
        else:
            await self.git.create_tag(tag)
            logger.info("Created tag %s at %s", tag, head[:12])

        await self.git.push_tag(self.remote, tag)
        logger.info("Pushed tag %s to %s", tag, self.remote)
        return TagOutcome.CREATED

    def _existing_tag(self, tag: str, revision: str, head: str, *, where: str) -> TagOutcome:
        context = {"where": where, "revision": revision, "head": head}
        if self.conflict_policy == "warn" and revision == head:
            logger.warning(
                "Tag %s already exists on %s at the current revision; continuing",
                tag,
                self.remote,
            )
            return TagOutcome.ALREADY_PRESENT
        raise TagAlreadyExistsError(tag, context=context)


__all__ = ["GitClient", "TagOutcome", "TagPublisher"]
