from __future__ import annotations


class AuthError(PermissionError):
    pass


class CaseNotFound(LookupError):
    pass


class OracleUnavailable(RuntimeError):
    pass


class RepositoryError(RuntimeError):
    pass


class FactPersistenceError(RepositoryError):
    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key


class InvalidTransitionError(ValueError):
    pass
