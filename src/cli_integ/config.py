"""Process-wide harness configuration."""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_REGION = "us-east-1"

DEFAULT_TIMEOUT_SECONDS = 2 * 60 * 60
"""Includes the time to acquire locks; worst-case single-threaded runtime."""

_TRUTHY = {"1", "true", "yes", "on"}


def _split_command(raw: str | None, default: str) -> tuple[str, ...]:
    return tuple(shlex.split(raw)) if raw and raw.strip() else (default,)


def _optional_path(raw: str | None) -> Path | None:
    return Path(raw) if raw else None


@dataclass(frozen=True)
class HarnessConfig:
    """Configuration shared by all fixtures in a test process.

    Credentials are not part of the configuration; the CLIs and aioboto3
    resolve them from the usual AWS environment variables and profiles.
    """

    region: str = DEFAULT_REGION
    endpoint_url: str | None = None

    # CLI binaries (argv prefixes, e.g. ("npx", "cdk"))
    cdk_command: tuple[str, ...] = ("cdk",)
    sam_command: tuple[str, ...] = ("sam",)

    # Filesystem
    output_dir: Path | None = None
    work_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    lock_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "cli-integ-locks"
    )
    keep_work_dirs: bool = False

    # Execution
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    run_id: str | None = None

    @classmethod
    def from_environment(cls) -> HarnessConfig:
        """Create HarnessConfig from environment variables."""
        tmp = Path(tempfile.gettempdir())
        return cls(
            region=(
                os.environ.get("AWS_REGION")
                or os.environ.get("AWS_DEFAULT_REGION")
                or DEFAULT_REGION
            ),
            endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
            cdk_command=_split_command(os.environ.get("CLI_INTEG_CDK"), "cdk"),
            sam_command=_split_command(os.environ.get("CLI_INTEG_SAM"), "sam"),
            output_dir=_optional_path(os.environ.get("CLI_INTEG_OUTPUT_DIR")),
            work_root=_optional_path(os.environ.get("CLI_INTEG_WORK_DIR")) or tmp,
            lock_dir=(
                _optional_path(os.environ.get("CLI_INTEG_LOCK_DIR")) or tmp / "cli-integ-locks"
            ),
            keep_work_dirs=os.environ.get("CLI_INTEG_KEEP_WORK_DIRS", "").lower() in _TRUTHY,
            timeout_seconds=float(
                os.environ.get("CLI_INTEG_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS))
            ),
            run_id=os.environ.get("CLI_INTEG_RUN_ID") or os.environ.get("GITHUB_RUN_ID") or None,
        )

    def aws_env(self) -> dict[str, str]:
        """Environment variables that pin the CLIs to this region/endpoint."""
        env = {"AWS_REGION": self.region, "AWS_DEFAULT_REGION": self.region}
        if self.endpoint_url:
            env["AWS_ENDPOINT_URL"] = self.endpoint_url
        return env

    def as_dict(self) -> dict[str, str | None]:
        """Serialize for display."""
        return {
            "region": self.region,
            "endpoint_url": self.endpoint_url,
            "cdk_command": shlex.join(self.cdk_command),
            "sam_command": shlex.join(self.sam_command),
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "work_root": str(self.work_root),
            "lock_dir": str(self.lock_dir),
            "keep_work_dirs": str(self.keep_work_dirs).lower(),
            "timeout_seconds": f"{self.timeout_seconds:g}",
            "run_id": self.run_id,
        }
