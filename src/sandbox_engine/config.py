# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sandbox_engine.models import Language

MIB = 1024 * 1024

DEFAULT_IMAGES: dict[Language, str] = {
    Language.BASH: "alpine:3.19",
    Language.PYTHON: "python:3.12-slim",
    Language.JAVASCRIPT: "node:22-slim",
    Language.TYPESCRIPT: "node:22-slim",
}


class SecurityPolicy(BaseModel):
    """Isolation ceilings applied to every execution unit.

    Attributes:
        max_processes: nproc ulimit inside the unit.
        max_open_files: nofile ulimit inside the unit.
        network_enabled: Attach the unit to a network. Off by default.
        memory_limit_bytes: Memory ceiling; memory+swap is pinned to the same value.
        cpu_quota: Fraction of one CPU (0.5 = 50% of the scheduling period).
        tmpfs_size_bytes: Size cap of the in-memory /tmp.
        read_only_root: Mount the root filesystem read-only, leaving only the
            working directory and /tmp writable.
        blocked_syscalls: Descriptive. No custom seccomp profile is installed; the
            dropped capabilities and Docker's default profile cover these calls.
        read_only_paths: Descriptive. Covered by `read_only_root`.
        writable_paths: Descriptive. Filled from the working directory and /tmp
            when left empty.
    """

    model_config = ConfigDict(frozen=True)

    max_processes: int = Field(default=10, gt=0)
    max_open_files: int = Field(default=100, gt=0)
    network_enabled: bool = False
    memory_limit_bytes: int = Field(default=512 * MIB, gt=0)
    cpu_quota: float = Field(default=0.5, gt=0.0)
    tmpfs_size_bytes: int = Field(default=64 * MIB, gt=0)
    read_only_root: bool = True

    blocked_syscalls: tuple[str, ...] = ("ptrace", "mount", "umount", "reboot", "swapon", "swapoff")
    read_only_paths: tuple[str, ...] = ("/etc", "/usr", "/bin", "/lib")
    writable_paths: tuple[str, ...] = ()


class SandboxConfig(BaseSettings):
    """
    Configuration for the Sandbox Engine.
    """

    runtime: Literal["docker", "local"] = "docker"
    timeout: float = Field(default=30.0, gt=0.0)
    working_dir: str = "/workspace"

    # Docker Configuration
    images: dict[Language, str] = Field(default_factory=lambda: dict(DEFAULT_IMAGES))
    docker_base_url: str | None = None
    container_prefix: str = "sandbox-engine-"
    stop_grace_seconds: int = 1

    collect_output_files: bool = True
    max_output_file_bytes: int = 10 * MIB
    enable_audit_logging: bool = True

    policy: SecurityPolicy = Field(default_factory=SecurityPolicy)

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_ENGINE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _fill_writable_paths(self) -> "SandboxConfig":
        if not self.policy.writable_paths:
            self.policy = self.policy.model_copy(update={"writable_paths": (self.working_dir, "/tmp")})
        return self

    def image_for(self, language: Language) -> str:
        return self.images.get(language, DEFAULT_IMAGES[language])
