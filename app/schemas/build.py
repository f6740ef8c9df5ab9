"""
Pydantic schemas for the build API requests and responses.
Wire keys: repo, commit, artifacts, build, publish, token, env.
"""
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from app.core.process_runner import CommandResult

REPO_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

# Token value requesting an anonymous HTTPS clone
ANONYMOUS_TOKEN = "-"


# =============================================================================
# Request Schemas
# =============================================================================

class BuildRequest(BaseModel):
    """Request body for POST /build."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    repository: str = Field(
        ...,
        alias="repo",
        description="Repository to build in owner/name form (e.g. ian-kent/ssbs)",
        max_length=200,
    )
    commit: str = Field(
        ...,
        description="Commit, branch or tag to check out (e.g. 1ba8d6s or master)",
        min_length=1,
        max_length=200,
    )
    artifact_pattern: str = Field(
        default="",
        alias="artifacts",
        description="File name glob for artifacts (e.g. ssbs-*.zip); empty disables collection",
    )
    build_steps: List[List[str]] = Field(
        default_factory=list,
        alias="build",
        description="Build commands, each a program plus arguments (e.g. [['make'], ['make', 'dist']])",
    )
    publish_steps: List[List[str]] = Field(
        default_factory=list,
        alias="publish",
        description="Publish commands run after a successful build (e.g. [['make', 'publish']])",
    )
    access_token: str = Field(
        default="",
        alias="token",
        description="'-' for anonymous HTTPS, a token for authenticated HTTPS, empty for SSH",
        repr=False,
    )
    environment: Dict[str, str] = Field(
        default_factory=dict,
        alias="env",
        description="Environment overlay; values may reference $WORKDIR and host variables",
    )

    @field_validator("artifact_pattern", "access_token", "build_steps", "publish_steps", "environment", mode="before")
    @classmethod
    def null_as_default(cls, v, info):
        """Treat explicit nulls like absent fields."""
        if v is not None:
            return v
        if info.field_name in ("build_steps", "publish_steps"):
            return []
        if info.field_name == "environment":
            return {}
        return ""

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Require owner/name with no path traversal."""
        v = v.strip()
        parts = v.split("/")
        if len(parts) != 2:
            raise ValueError("repo must be in owner/name form")
        for part in parts:
            if part in (".", "..") or not REPO_SEGMENT_PATTERN.match(part):
                raise ValueError(f"Invalid repository segment: {part!r}")
        return v

    @field_validator("commit")
    @classmethod
    def validate_commit(cls, v: str) -> str:
        """Reject values git would parse as an option."""
        if v.startswith("-"):
            raise ValueError("commit must not start with '-'")
        return v

    @field_validator("build_steps", "publish_steps")
    @classmethod
    def validate_commands(cls, v: List[List[str]]) -> List[List[str]]:
        """Every command needs at least a program name."""
        for command in v:
            if not command or not command[0]:
                raise ValueError("Each step must name a program")
        return v

    @property
    def clone_mode(self) -> str:
        """How the repository will be cloned: anonymous, token or ssh."""
        if not self.access_token:
            return "ssh"
        if self.access_token == ANONYMOUS_TOKEN:
            return "anonymous"
        return "token"


# =============================================================================
# Response Schemas
# =============================================================================

class StepResult(BaseModel):
    """Outcome of one executed step."""
    command: Optional[List[str]] = Field(
        default=None,
        description="The command run; null for internal steps (clone, checkout, artifact search)",
    )
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = Field(
        default=None,
        description="Failure description; omitted when the step succeeded",
    )

    @property
    def failed(self) -> bool:
        return self.error is not None

    @model_serializer(mode="wrap")
    def serialize_step(self, handler) -> Dict[str, Any]:
        data = handler(self)
        if data.get("error") is None:
            data.pop("error", None)
        return data

    @classmethod
    def from_command(cls, result: CommandResult, internal: bool = False) -> "StepResult":
        """Build a step result; internal steps do not expose their command."""
        return cls(
            command=None if internal else list(result.command),
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.error,
        )


class BuildResponse(BaseModel):
    """Response body for POST /build."""
    steps: List[StepResult] = Field(
        default_factory=list,
        description="Result of each attempted step; internal steps appear only when they fail",
    )
    artifacts: Optional[Dict[str, str]] = Field(
        default=None,
        description="Relative artifact path -> base64 content or error text; null when not collected",
    )

    @property
    def failed(self) -> bool:
        return any(step.failed for step in self.steps)
