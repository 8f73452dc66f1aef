from __future__ import annotations


class SpecForgeError(Exception):
    status_code = 400

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class UnauthenticatedError(SpecForgeError):
    status_code = 401

    def __init__(self, detail: str = "Unauthenticated") -> None:
        super().__init__(detail)


class ForbiddenError(SpecForgeError):
    status_code = 403

    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(detail)


class NotFoundError(SpecForgeError):
    status_code = 404


class GenerationValidationError(SpecForgeError):
    status_code = 400


class GenerationConflictError(SpecForgeError):
    status_code = 409


class GenerationCancelledError(SpecForgeError):
    status_code = 409


class CredentialsUnavailableError(SpecForgeError):
    status_code = 400

    def __init__(
        self,
        detail: str = "No LLM client available. Please configure your API credentials in settings.",
    ) -> None:
        super().__init__(detail)


class SecretsConfigError(SpecForgeError):
    status_code = 500


class LLMProviderError(SpecForgeError):
    status_code = 502


class LLMTimeoutError(LLMProviderError):
    status_code = 504


class RateLimitedError(SpecForgeError):
    status_code = 429

    def __init__(self, detail: str, retry_after_s: float = 0.0) -> None:
        super().__init__(detail)
        self.retry_after_s = retry_after_s
