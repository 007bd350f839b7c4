"""Custom exceptions for Balancer Studio."""

from __future__ import annotations


class BalancerError(Exception):
    """Base exception for all Balancer operations."""

    kind = "error"

    def __init__(self, message: str, *, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code

    @property
    def detail(self) -> str:
        return str(self)


class RenderError(BalancerError):
    """Entity state cannot be turned into a configuration."""

    kind = "render_error"

    def __init__(self, problems: list[str] | str, *, exit_code: int = 1):
        self.problems = [problems] if isinstance(problems, str) else list(problems)
        super().__init__("; ".join(self.problems), exit_code=exit_code)


class ConfigSyntaxError(BalancerError):
    """NGINX rejected (or could not check) a candidate configuration."""

    kind = "syntax_error"

    def __init__(self, diagnostics: str, *, exit_code: int = 1):
        super().__init__(diagnostics, exit_code=exit_code)
        self.diagnostics = diagnostics


class ReloadError(BalancerError):
    """NGINX reload failed or was not acknowledged in time."""

    kind = "reload_error"


class ActivationError(BalancerError):
    """The staged configuration could not be swapped in."""

    kind = "activation_error"


class StoreError(BalancerError):
    """Persistence layer failure."""

    kind = "store_error"


class EntityNotFoundError(BalancerError):
    kind = "not_found"


class ConflictError(BalancerError):
    """A write would break uniqueness or a reference."""

    kind = "conflict"


class CertificateTransitionError(BalancerError):
    kind = "invalid_transition"


class StatusUnavailableError(BalancerError):
    """NGINX status could not be read or parsed."""

    kind = "status_unavailable"


class IssuerError(BalancerError):
    """Certificate issuance failed."""

    kind = "issuer_error"


class CommandTimeoutError(BalancerError):
    kind = "timeout"


class OperationCancelledError(BalancerError):
    kind = "cancelled"


class InternalError(BalancerError):
    """Unexpected failure inside an apply run."""

    kind = "internal_error"
