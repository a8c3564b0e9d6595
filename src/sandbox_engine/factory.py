from typing import TYPE_CHECKING

import docker
from loguru import logger

from sandbox_engine.config import SandboxConfig
from sandbox_engine.errors import ErrorCode, SandboxError
from sandbox_engine.runtime import SandboxRuntime
from sandbox_engine.runtimes.docker import DockerRuntime
from sandbox_engine.runtimes.local import LocalRuntime

if TYPE_CHECKING:
    from sandbox_engine.engine import SandboxEngine


class SandboxFactory:
    """
    Factory to create SandboxRuntime instances based on configuration.
    """

    @staticmethod
    def get_runtime(config: SandboxConfig, runtime: str | None = None) -> SandboxRuntime:
        """
        Returns an instance of the configured SandboxRuntime.
        """
        resolved = runtime or config.runtime

        if resolved == "docker":
            return DockerRuntime(config)
        elif resolved == "local":
            return LocalRuntime(config)
        elif resolved == "wasm":
            raise SandboxError("WASM runtime is not yet implemented", ErrorCode.NOT_IMPLEMENTED)
        else:
            raise SandboxError(f"Unknown runtime: {resolved}", ErrorCode.UNKNOWN_RUNTIME)

    @staticmethod
    def is_docker_available(config: SandboxConfig | None = None) -> bool:
        """Ping the Docker daemon."""
        base_url = config.docker_base_url if config else None
        try:
            client = docker.DockerClient(base_url=base_url) if base_url else docker.from_env()
            try:
                return bool(client.ping())
            finally:
                client.close()
        except Exception as e:
            logger.debug(f"Docker daemon not reachable: {e}")
            return False

    @classmethod
    def auto_detect(cls, config: SandboxConfig | None = None) -> str:
        """Pick 'docker' when a daemon answers, 'local' otherwise."""
        if cls.is_docker_available(config):
            return "docker"
        logger.warning("Docker is not available. Falling back to the local runtime.")
        return "local"

    @classmethod
    def create_auto(cls, config: SandboxConfig | None = None) -> "SandboxEngine":
        from sandbox_engine.engine import SandboxEngine

        config = config or SandboxConfig()
        return SandboxEngine(config, cls.get_runtime(config, cls.auto_detect(config)))
