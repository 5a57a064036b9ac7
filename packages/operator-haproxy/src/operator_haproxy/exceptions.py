"""
Exception taxonomy for the HAProxy operator.

Read path and mutation path fail differently:
- TransportError: network-level failure (DNS, refused, timeout). Recoverable,
  the next poll tick retries.
- UpstreamError: non-2xx from a read call. Recoverable, the stale view stays.
- ConflictError: configuration version race that survived one retry.
  The caller must re-decide.
- MutationError: non-2xx, non-conflict response to a mutation. Not retried.
- ParseError: malformed metrics payload or response body. Fatal to that
  poll cycle only.
- DuplicateNameError: a create or rename would violate name uniqueness
  inside a backend.

Per project patterns:
- Store context data in attributes for error handling
- Include descriptive message with relevant details
"""


class HAProxyOperatorError(Exception):
    """Base class for all operator-haproxy errors."""


class TransportError(HAProxyOperatorError):
    """
    Raised when the HTTP request never produced a response.

    Attributes:
        method: HTTP method of the failed request
        path: Request path (relative to the client's base URL)
        reason: Underlying transport error description
    """

    def __init__(self, method: str, path: str, reason: str) -> None:
        self.method = method
        self.path = path
        self.reason = reason
        super().__init__(f"Transport error on {method} {path}: {reason}")


class UpstreamError(HAProxyOperatorError):
    """
    Raised when a read call returns a non-2xx status.

    Attributes:
        status: HTTP status code returned by the control plane
        body: Response body text (may be empty)
        path: Request path that failed
    """

    def __init__(self, status: int, body: str, path: str = "") -> None:
        self.status = status
        self.body = body
        self.path = path
        where = f" from {path}" if path else ""
        super().__init__(f"Upstream returned HTTP {status}{where}: {body[:200]}")


class ConflictError(HAProxyOperatorError):
    """
    Raised when a mutation keeps hitting configuration version conflicts.

    The mutation was attempted with a fresh version each time and was
    rejected every time. Nothing was applied.

    Attributes:
        operation: Name of the mutating operation (e.g. "create_server")
        attempts: Number of attempts made before giving up
    """

    def __init__(self, operation: str, attempts: int) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} rejected with a configuration version conflict "
            f"after {attempts} attempts. Re-read the configuration and retry."
        )


class MutationError(HAProxyOperatorError):
    """
    Raised when a mutation fails with a non-conflict error status.

    Attributes:
        operation: Name of the mutating operation
        status: HTTP status code returned
        body: Response body text
    """

    def __init__(self, operation: str, status: int, body: str) -> None:
        self.operation = operation
        self.status = status
        self.body = body
        super().__init__(f"{operation} failed with HTTP {status}: {body[:200]}")


class ParseError(HAProxyOperatorError):
    """
    Raised when a payload cannot be parsed.

    Attributes:
        reason: What was wrong with the payload
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to parse payload: {reason}")


class DuplicateNameError(HAProxyOperatorError):
    """
    Raised when a backend name, or a server name inside a backend, is taken.

    Attributes:
        name: The conflicting name
        backend: Backend the server name clashes in, None for backend names
    """

    def __init__(self, name: str, backend: str | None = None) -> None:
        self.name = name
        self.backend = backend
        if backend is None:
            message = f"Backend '{name}' already exists"
        else:
            message = f"Server '{name}' already exists in backend '{backend}'"
        super().__init__(message)
