"""Server-side gate deciding which local command a stream may run.

The service name from the stream metadata is executed directly as a local
program, so it is checked by exact membership in a fixed allow-list.  The
repository identifier becomes that program's argument and is checked by a
:class:`RepositoryPolicy`.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import pyarrow as pa

from git_remote_rpc.metadata import REPOSITORY_KEY, REQUEST_VERSION, REQUEST_VERSION_KEY, SERVICE_KEY, get_all
from git_remote_rpc.rpc._common import InvalidMetadata, RepositoryNotPermitted, ServiceNotPermitted
from git_remote_rpc.rpc._types import StreamMetadata, ValidatedRequest

UPLOAD_PACK = "git-upload-pack"
RECEIVE_PACK = "git-receive-pack"

DEFAULT_ALLOWED_SERVICES: frozenset[str] = frozenset({UPLOAD_PACK, RECEIVE_PACK})


@dataclass(frozen=True)
class RepositoryPolicy:
    """Which repository identifiers may reach a backing command.

    Every identifier must be non-empty and relative.  It must not contain
    NUL, must not start with ``-`` (it would be parsed as an option) and must
    not contain a ``..`` segment.  With a *root*, the identifier is resolved
    under it (following symlinks) and must stay inside it; the resolved path
    is what the command receives.

    Attributes:
        root: Directory all repositories must live under, or ``None`` to
            pass identifiers through unchanged.

    """

    root: Path | None = None

    def resolve(self, repository: str) -> str:
        """Return the command argument for *repository*.

        Raises:
            RepositoryNotPermitted: If the identifier breaks the policy.

        """
        if not repository:
            raise RepositoryNotPermitted(repository, "empty identifier")
        if "\x00" in repository:
            raise RepositoryNotPermitted(repository, "contains NUL")
        if repository.startswith("-"):
            raise RepositoryNotPermitted(repository, "looks like an option")
        path = PurePosixPath(repository)
        if path.is_absolute() or "\\" in repository:
            raise RepositoryNotPermitted(repository, "must be a relative path")
        if ".." in path.parts:
            raise RepositoryNotPermitted(repository, "contains '..'")
        if self.root is None:
            return repository
        root = self.root.resolve()
        target = (root / path).resolve()
        if not target.is_relative_to(root):
            raise RepositoryNotPermitted(repository, "outside the repository root")
        return str(target)


class ServiceValidator:
    """Validate stream metadata against an allow-list and a repository policy."""

    __slots__ = ("_allowed", "_policy")

    def __init__(
        self,
        allowed_services: Iterable[str] = DEFAULT_ALLOWED_SERVICES,
        repository_policy: RepositoryPolicy | None = None,
    ) -> None:
        """Freeze *allowed_services*; the default policy has no root."""
        self._allowed = frozenset(allowed_services)
        self._policy = repository_policy if repository_policy is not None else RepositoryPolicy()

    @property
    def allowed_services(self) -> frozenset[str]:
        """The allow-list in force."""
        return self._allowed

    @property
    def repository_policy(self) -> RepositoryPolicy:
        """The repository policy in force."""
        return self._policy

    def parse(self, metadata: pa.KeyValueMetadata | None) -> StreamMetadata:
        """Extract ``service`` and ``repository``, each required exactly once.

        Raises:
            InvalidMetadata: If metadata is missing or malformed.

        """
        if metadata is None:
            raise InvalidMetadata("missing stream metadata")
        version = get_all(metadata, REQUEST_VERSION_KEY)
        if version != [REQUEST_VERSION]:
            raise InvalidMetadata(f"unsupported protocol version: {[v.decode(errors='replace') for v in version]}")
        repo = get_all(metadata, REPOSITORY_KEY)
        svc = get_all(metadata, SERVICE_KEY)
        if len(repo) != 1 or len(svc) != 1:
            raise InvalidMetadata(f"invalid repository ({_fmt_values(repo)}) or service ({_fmt_values(svc)})")
        try:
            return StreamMetadata(service=svc[0].decode(), repository=repo[0].decode())
        except UnicodeDecodeError as exc:
            raise InvalidMetadata(f"metadata is not valid UTF-8: {exc}") from exc

    def validate(self, metadata: pa.KeyValueMetadata | None) -> ValidatedRequest:
        """Run every check, in order, and return the request to execute.

        Raises:
            InvalidMetadata: If metadata is missing or malformed.
            ServiceNotPermitted: If the service is not allow-listed.
            RepositoryNotPermitted: If the repository policy rejects the identifier.

        """
        md = self.parse(metadata)
        # Exact membership only: the service is executed as a local program.
        if md.service not in self._allowed:
            raise ServiceNotPermitted(md.service)
        return ValidatedRequest(
            service=md.service,
            repository=md.repository,
            path=self._policy.resolve(md.repository),
        )


def _fmt_values(values: list[bytes]) -> str:
    return "[" + " ".join(v.decode(errors="replace") for v in values) + "]"
