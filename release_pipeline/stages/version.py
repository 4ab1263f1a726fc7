"""Release version resolution from the checked-in version file.

The version is a single free-form token (typically semver-shaped) stored in
a plain-text file at the repository root. Reading it is a pure, fatal
operation: there is no sensible fallback, so every failure raises
:class:`~release_pipeline.exceptions.ParseError` and nothing is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from release_pipeline.exceptions import ParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReleaseVersion:
    """Immutable release version; also the exact tag name."""

    value: str

    def __str__(self) -> str:
        return self.value


def resolve_version(path: Path) -> ReleaseVersion:
    r"""Read and trim the release version token from ``path``.

    Parameters
    ----------
    path : Path
        Location of the version file (``VERSION.txt`` by default).

    Returns
    -------
    ReleaseVersion
        The file content with leading and trailing whitespace stripped.

    Raises
    ------
    ParseError
        If the file cannot be read or decoded, is empty after trimming, or
        holds more than one whitespace-separated token.

    Examples
    --------
    >>> from pathlib import Path
    >>> p = Path("VERSION.txt"); _ = p.write_text("2.3.0\n")
    >>> resolve_version(p).value
    '2.3.0'
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(
            f"Version file {path} is unreadable: {exc.strerror or exc}",
            context={"path": str(path)},
        ) from exc
    except UnicodeDecodeError as exc:
        raise ParseError(
            f"Version file {path} is not valid UTF-8",
            context={"path": str(path)},
        ) from exc

    token = raw.strip()
    if not token:
        raise ParseError(
            f"Version file {path} is empty", context={"path": str(path)}
        )
    if len(token.split()) != 1:
        raise ParseError(
            f"Version file {path} must contain exactly one version token",
            context={"path": str(path), "content": token[:80]},
        )
    logger.info("Resolved release version %s from %s", token, path.name)
    return ReleaseVersion(token)


__all__ = ["ReleaseVersion", "resolve_version"]
