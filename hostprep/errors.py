# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
from typing import Optional


class SetupError(Exception):
    """Base exception for provisioning errors."""

    pass


class PreconditionFailure(SetupError):
    """Raised when the host cannot be provisioned at all (not root, no OS info, no package manager)."""

    pass


class PackageOperationFailure(SetupError):
    """Raised when a package-manager operation fails."""

    pass


class ExhaustedRetries(PackageOperationFailure):
    """Raised when a command kept failing until its retry policy ran out."""

    def __init__(
        self,
        command: str,
        attempts: int,
        last_exit_code: int,
        output: str = "",
    ) -> None:
        self.command = command
        self.attempts = attempts
        self.last_exit_code = last_exit_code
        self.output = output
        super().__init__(
            f"Command failed after {attempts} attempt(s) "
            f"(last exit code {last_exit_code}): {command}"
        )


class ValidationRejected(SetupError):
    """Raised when a validator refuses a mutated config file (the file has been restored)."""

    def __init__(
        self, target: str, diagnostic: str, backup_file: Optional[str] = None
    ) -> None:
        self.target = target
        self.diagnostic = diagnostic
        self.backup_file = backup_file
        super().__init__(f"Validation rejected changes to {target}")


class FirewallError(SetupError):
    """Raised when the core firewall policy could not be applied."""

    pass
