import json
import asyncio
import aiohttp
import kopf
import kubernetes_asyncio

_ALREADY_EXISTS = "alreadyexists"
_NOT_FOUND = "notfound"


class StoropError(Exception):
    """Base class of all errors raised by the operator."""


class InvalidSpecError(StoropError):
    """The resource spec cannot be turned into child objects.

    Surfaced in status; not retried until the spec changes.
    """


class ConflictError(StoropError):
    """A write raced with another writer (stale resourceVersion, already exists)."""


class TransientStoreError(StoropError):
    """The cluster API could not be reached or asked us to back off."""


class RolloutTimeoutError(StoropError):
    """A node did not finish draining or verifying in time."""

    def __init__(self, node_name: str, phase: str, message: str = None):
        self.node_name = node_name
        self.phase = phase
        super().__init__(
            message or f"Node {node_name} timed out in phase {phase}"
        )


class RolloutAbortedError(StoropError):
    """The parent changed or disappeared while a rollout plan was executing."""


class AdoptionConflictError(StoropError):
    """A pre-existing object is not owned by the operator and is left alone."""


def _reason(ex: kubernetes_asyncio.client.ApiException) -> str:
    try:
        err = json.loads(ex.body) if ex.body else {}
    except (json.JSONDecodeError, TypeError):
        return ""
    return (err.get("reason") or "").lower() if isinstance(err, dict) else ""


def _message(ex: kubernetes_asyncio.client.ApiException) -> str:
    error_msg = f"Kubernetes API error ({ex.status}): {ex.reason}"
    try:
        if ex.body:
            body = json.loads(ex.body)
            if isinstance(body, dict) and "message" in body:
                error_msg = f"{error_msg} - {body['message']}"
    except (json.JSONDecodeError, TypeError):
        pass
    return error_msg


def not_found_error(ex: Exception) -> bool:
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return False
    return ex.status == 404 or _reason(ex) == _NOT_FOUND


def convert_api_exception(ex: Exception) -> Exception:
    """
    Convert a kubernetes or transport exception into the operator's error taxonomy.

    404 is not converted here; callers check `not_found_error` first since an
    absent object is a normal outcome for reads and deletes.

    Returns:
        The converted exception, to be raised by the caller with `from ex`.
    """
    if isinstance(ex, StoropError):
        return ex
    if isinstance(ex, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return TransientStoreError(f"Cluster API unreachable: {ex}")
    if not isinstance(ex, kubernetes_asyncio.client.ApiException):
        return ex

    error_msg = _message(ex)
    status = ex.status or 0
    if status == 409:
        return ConflictError(error_msg)
    if status in (408, 429) or status >= 500 or status == 0:
        return TransientStoreError(error_msg)
    # Credentials or RBAC of the operator, not the user's spec
    if status in (401, 403):
        return TransientStoreError(error_msg)
    if 400 <= status < 500:
        return InvalidSpecError(error_msg)
    return TransientStoreError(error_msg)


def to_kopf_error(ex: Exception, delay: float = 30):
    """
    Convert an operator error to a Kopf-friendly exception.

    Raises:
        kopf.TemporaryError or kopf.PermanentError with serializable error details
    """
    if isinstance(ex, kubernetes_asyncio.client.ApiException):
        ex = convert_api_exception(ex)
    if isinstance(ex, InvalidSpecError):
        raise kopf.PermanentError(str(ex))
    if isinstance(ex, StoropError):
        raise kopf.TemporaryError(str(ex), delay=delay)
    raise ex
