"""
Artifact Collector - find build outputs by filename glob and encode them.

Matching is by file name (not full path), searched recursively from the
workspace root with `find . -name <pattern>`. Keys keep find's "./" prefix.
File names that are not valid UTF-8 are still read from their real bytes;
only the key shows U+FFFD in their place. No size limit is enforced.
"""
import base64
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from app.core.process_runner import CommandResult, StepRunner

logger = logging.getLogger(__name__)


def display_path(path: str) -> str:
    """Printable form of a surrogate-escaped path; undecodable bytes become U+FFFD."""
    return path.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


@dataclass
class ArtifactCollection:
    """Outcome of one collection pass."""
    artifacts: dict[str, str] = field(default_factory=dict)
    search_failure: Optional[CommandResult] = None

    @property
    def ok(self) -> bool:
        return self.search_failure is None


class ArtifactCollector:
    """Resolves an artifact pattern and reads matching files."""

    def __init__(self, runner: StepRunner):
        self.runner = runner

    def find(
        self,
        workdir: Path,
        pattern: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> tuple[list[str], CommandResult]:
        """Return sorted relative paths matching pattern, plus the search result."""
        result = self.runner.run(
            ["find", ".", "-name", pattern],
            cwd=workdir,
            env=env,
            errors="surrogateescape",
        )
        if not result.ok:
            return [], result
        paths = sorted({line for line in result.stdout.split("\n") if line})
        return paths, result

    @staticmethod
    def read(workdir: Path, relative_path: str) -> bytes:
        """Read one artifact. Raises OSError."""
        return (Path(workdir) / relative_path).read_bytes()

    def collect(
        self,
        workdir: Path,
        pattern: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> ArtifactCollection:
        """
        Find and base64-encode every artifact matching pattern.

        A failed search is returned as `search_failure`; a file that cannot
        be read gets an error string in place of its content.
        """
        paths, search = self.find(workdir, pattern, env=env)
        if not search.ok:
            logger.warning(f"artifact_search_failed pattern={pattern!r} error={search.error!r}")
            search = replace(search, stdout=display_path(search.stdout), stderr=display_path(search.stderr))
            return ArtifactCollection(search_failure=search)

        collection = ArtifactCollection()
        for relative_path in paths:
            key = display_path(relative_path)
            try:
                content = self.read(workdir, relative_path)
            except OSError as e:
                collection.artifacts[key] = f"Error reading artifact: {display_path(str(e))}"
                logger.warning(f"artifact_read_failed path={key} error={display_path(str(e))}")
                continue
            collection.artifacts[key] = base64.b64encode(content).decode("ascii")
            logger.info(f"artifact_added path={key} size={len(content)}")

        logger.info(f"artifacts_collected pattern={pattern!r} count={len(collection.artifacts)}")
        return collection
