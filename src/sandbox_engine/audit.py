import hashlib

from loguru import logger


class AuditLogger:
    """Standalone audit trail for execution attempts.

    Logs a hash of every payload before it runs (local mode, loguru only).
    """

    def __init__(self, service_name: str = "sandbox-engine", enabled: bool = True):
        """Initializes the AuditLogger.

        Args:
            service_name: The name of the service (default: 'sandbox-engine').
            enabled: Whether to enable audit logging.
        """
        self.service_name = service_name
        self.enabled = enabled
        if self.enabled:
            logger.info("Audit logging enabled (Local Mode - loguru only)")

    async def log_pre_execution(self, code: str, language: str, request_id: str | None = None) -> str:
        """Log the code execution attempt.

        Calculates a SHA-256 hash of the code and logs it if enabled.

        Args:
            code: The code to be executed.
            language: The programming language of the code.
            request_id: The request the code belongs to.

        Returns:
            str: The SHA-256 hash of the code.
        """
        code_hash = hashlib.sha256(code.encode("utf-8")).hexdigest()
        if self.enabled:
            logger.bind(service=self.service_name, request_id=request_id).info(
                f"AUDIT: Executing {language} code. Hash: {code_hash}, Length: {len(code)}"
            )
        return code_hash
