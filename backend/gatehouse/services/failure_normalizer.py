"""
Gatehouse — Failure Normalizer
================================

What:  Turns whatever a business handler raised into one Canonical Error
       Record: {code, message, details, requestId, timestamp, path}.
How:   An ordered list of structural predicates; the first one that matches
       decides the classification. Order matters because some error shapes
       satisfy more than one test (a SQLAlchemy error also has a `code`).
Who:   Used by FailureBoundaryMiddleware and the exception handlers that
       main.register_exception_handlers installs.

Classification order:
    1. Framework HTTP error   starlette/fastapi HTTPException      → its own status
    2. Persistence error      recognized engine code, client version
                              metadata, constraint target, or a
                              SQLAlchemy NoResultFound / DBAPIError → 409/404/400/400/500
    3. Validation collection  FieldViolation list, InputValidationError,
                              RequestValidationError, pydantic errors → 422
    4. Unclassified           anything else                        → 500

Persistence codes:
    | engine code | SQLSTATE | status | message                          |
    |-------------|----------|--------|----------------------------------|
    | P2002       | 23505    | 409    | Unique constraint violation      |
    | P2025       | -        | 404    | Record not found                 |
    | P2003       | 23503    | 400    | Foreign key constraint violation |
    | P2000       | 22001    | 400    | Value too long for column        |
    | other       | other    | 500    | Database error occurred          |

Stack traces are only ever placed in `details` when the normalizer was built
with expose_stack=True (development environments).
"""

import logging
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pydantic
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError, NoResultFound
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatehouse.exceptions import (
    FailureKind,
    FieldViolation,
    InputValidationError,
    PersistenceErrorKind,
)

logger = logging.getLogger("gatehouse.errors")

FALLBACK_MESSAGE = "Internal server error"

RECOGNIZED_ENGINE_CODES: Dict[str, PersistenceErrorKind] = {
    "P2002": PersistenceErrorKind.UNIQUE_CONSTRAINT,
    "P2025": PersistenceErrorKind.RECORD_NOT_FOUND,
    "P2003": PersistenceErrorKind.FOREIGN_KEY,
    "P2000": PersistenceErrorKind.VALUE_TOO_LONG,
}

SQLSTATE_CODES: Dict[str, PersistenceErrorKind] = {
    "23505": PersistenceErrorKind.UNIQUE_CONSTRAINT,
    "23503": PersistenceErrorKind.FOREIGN_KEY,
    "22001": PersistenceErrorKind.VALUE_TOO_LONG,
}

PERSISTENCE_OUTCOMES: Dict[PersistenceErrorKind, Tuple[int, str]] = {
    PersistenceErrorKind.UNIQUE_CONSTRAINT: (409, "Unique constraint violation"),
    PersistenceErrorKind.RECORD_NOT_FOUND: (404, "Record not found"),
    PersistenceErrorKind.FOREIGN_KEY: (400, "Foreign key constraint violation"),
    PersistenceErrorKind.VALUE_TOO_LONG: (400, "Value too long for column"),
    PersistenceErrorKind.UNRECOGNIZED: (500, "Database error occurred"),
}

# FastAPI prefixes request validation locations with where the value came from
_REQUEST_LOCATIONS = frozenset({"body", "query", "path", "header", "cookie"})


@dataclass(frozen=True)
class Classification:
    kind: FailureKind
    status: int
    message: str
    details: Optional[Any] = None
    persistence_kind: Optional[PersistenceErrorKind] = None


@dataclass(frozen=True)
class CanonicalError:
    """The one wire shape every handler failure is reported in."""

    code: int
    message: str
    details: Optional[Any]
    request_id: str
    timestamp: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "requestId": self.request_id,
            "timestamp": self.timestamp,
            "path": self.path,
        }


# ══════════════════════════════════════════════════════════════════════════
# Structural probes
# ══════════════════════════════════════════════════════════════════════════

def _probe(obj: Any, *names: str) -> Any:
    """First non-None attribute (or mapping key) among `names`."""
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def _json_safe(value: Any) -> Any:
    try:
        return jsonable_encoder(value)
    except (TypeError, ValueError):
        return repr(value)


def _kind_for(code: Any, table: Dict[str, PersistenceErrorKind]) -> Optional[PersistenceErrorKind]:
    """Table lookup for string codes only; anything else is unrecognized."""
    if isinstance(code, str):
        return table.get(code)
    return None


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    # asyncpg exposes `sqlstate`, psycopg2 `pgcode`, psycopg 3 `sqlstate`
    return _probe(exc.orig, "sqlstate", "pgcode")


def _dbapi_meta(exc: DBAPIError) -> Dict[str, Any]:
    """
    Engine-neutral metadata from a driver error.

    asyncpg puts constraint/column names on the error itself; psycopg keeps
    them on `diag`.
    """
    orig = exc.orig
    if orig is None:
        return {}
    diag = getattr(orig, "diag", None)
    constraint = _probe(orig, "constraint_name") or _probe(diag, "constraint_name")
    column = _probe(orig, "column_name") or _probe(diag, "column_name")
    return {
        "target": constraint,
        "field_name": constraint,
        "column_name": column,
    }


def is_http_error(exc: Any) -> bool:
    return isinstance(exc, StarletteHTTPException)


def is_persistence_error(exc: Any) -> bool:
    if isinstance(exc, (NoResultFound, DBAPIError)):
        return True
    if _kind_for(_probe(exc, "code"), RECOGNIZED_ENGINE_CODES) is not None:
        return True
    if _probe(exc, "client_version", "clientVersion"):
        return True
    meta = _probe(exc, "meta")
    return isinstance(meta, Mapping) and meta.get("target") is not None


def is_validation_collection(exc: Any) -> bool:
    if isinstance(exc, (InputValidationError, RequestValidationError, pydantic.ValidationError)):
        return True
    return isinstance(exc, (list, tuple)) and any(isinstance(e, FieldViolation) for e in exc)


# ══════════════════════════════════════════════════════════════════════════
# Validation flattening
# ══════════════════════════════════════════════════════════════════════════

def flatten_violations(violations: Sequence[FieldViolation]) -> List[Dict[str, Any]]:
    """Recursively render violations; `children` is omitted when there are none."""
    flattened = []
    for violation in violations:
        entry: Dict[str, Any] = {
            "property": violation.property,
            "value": _json_safe(violation.value),
            "constraints": dict(violation.constraints),
        }
        if violation.children:
            entry["children"] = flatten_violations(violation.children)
        flattened.append(entry)
    return flattened


def violations_from_pydantic(
    errors: Sequence[Dict[str, Any]], strip_location: bool = False
) -> List[FieldViolation]:
    """
    Fold pydantic error dicts into a violation tree keyed by their `loc` path.

    ("body", "name", "first") becomes a `name` violation with a `first`
    child. Each leaf records {error type: message} as its constraint.
    """
    roots: Dict[str, FieldViolation] = {}
    order: List[FieldViolation] = []

    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        if strip_location and len(loc) > 1 and loc[0] in _REQUEST_LOCATIONS:
            loc = loc[1:]
        if not loc:
            loc = ["__root__"]

        siblings, parent = roots, None
        node = None
        for part in loc:
            node = siblings.get(part)
            if node is None:
                node = FieldViolation(property=part)
                siblings[part] = node
                if parent is None:
                    order.append(node)
                else:
                    parent.children.append(node)
            parent = node
            siblings = {child.property: child for child in node.children}

        node.value = error.get("input")
        node.constraints[error.get("type", "invalid")] = error.get("msg", "Invalid value")

    return order


def _collect_violations(exc: Any) -> List[FieldViolation]:
    if isinstance(exc, InputValidationError):
        return exc.violations
    if isinstance(exc, RequestValidationError):
        return violations_from_pydantic(exc.errors(), strip_location=True)
    if isinstance(exc, pydantic.ValidationError):
        return violations_from_pydantic(exc.errors())
    return [e for e in exc if isinstance(e, FieldViolation)]


# ══════════════════════════════════════════════════════════════════════════
# Classifiers
# ══════════════════════════════════════════════════════════════════════════

def _classify_http(exc: StarletteHTTPException) -> Classification:
    status = exc.status_code
    detail = exc.detail
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = "Error"

    if isinstance(detail, str):
        message = detail
        payload: Any = {"statusCode": status, "message": detail, "error": phrase}
    else:
        message = _probe(detail, "message") if isinstance(detail, Mapping) else None
        if not isinstance(message, str):
            message = phrase
        payload = _json_safe(detail)
    return Classification(FailureKind.HTTP, status, message, payload)


def _classify_persistence(exc: Any) -> Classification:
    meta = _probe(exc, "meta")
    if not isinstance(meta, Mapping):
        meta = {}

    if isinstance(exc, NoResultFound):
        kind, code = PersistenceErrorKind.RECORD_NOT_FOUND, None
    elif isinstance(exc, DBAPIError):
        code = _sqlstate(exc)
        kind = _kind_for(code, SQLSTATE_CODES) or PersistenceErrorKind.UNRECOGNIZED
        meta = _dbapi_meta(exc)
    else:
        code = _probe(exc, "code")
        kind = _kind_for(code, RECOGNIZED_ENGINE_CODES) or PersistenceErrorKind.UNRECOGNIZED

    status, message = PERSISTENCE_OUTCOMES[kind]

    if kind is PersistenceErrorKind.UNIQUE_CONSTRAINT:
        target = meta.get("target")
        field = ", ".join(str(t) for t in target) if isinstance(target, (list, tuple)) else target
        details: Dict[str, Any] = {"target": _json_safe(target), "field": field}
    elif kind is PersistenceErrorKind.RECORD_NOT_FOUND:
        details = {"cause": meta.get("cause") or (str(exc) if isinstance(exc, NoResultFound) else None)}
    elif kind is PersistenceErrorKind.FOREIGN_KEY:
        details = {"field_name": meta.get("field_name")}
    elif kind is PersistenceErrorKind.VALUE_TOO_LONG:
        details = {"column_name": meta.get("column_name")}
    else:
        details = {"code": _json_safe(code), "meta": _json_safe(dict(meta))}

    return Classification(FailureKind.PERSISTENCE, status, message, details, persistence_kind=kind)


def _classify_validation(exc: Any) -> Classification:
    errors = flatten_violations(_collect_violations(exc))
    return Classification(FailureKind.VALIDATION, 422, "Validation failed", {"errors": errors})


def _classify_unclassified(exc: Any, expose_stack: bool) -> Classification:
    message = str(exc) if isinstance(exc, BaseException) else _probe(exc, "message")
    details: Dict[str, Any] = {"error_type": type(exc).__name__}
    if expose_stack and isinstance(exc, BaseException):
        details["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return Classification(FailureKind.UNCLASSIFIED, 500, message or FALLBACK_MESSAGE, details)


class FailureNormalizer:
    """
    Classifies handler failures and builds Canonical Error Records.

    Holds no per-request state; one instance serves the whole process.
    """

    def __init__(self, expose_stack: bool = False):
        self.expose_stack = expose_stack

    def classify(self, exc: Any) -> Classification:
        if is_http_error(exc):
            return _classify_http(exc)
        if is_persistence_error(exc):
            return _classify_persistence(exc)
        if is_validation_collection(exc):
            return _classify_validation(exc)
        return _classify_unclassified(exc, self.expose_stack)

    def normalize(self, exc: Any, request_id: str, path: str) -> CanonicalError:
        """
        Classify `exc`, stamp the record and log one structured line for it.

        Never raises: if classification itself fails, the failure is reported
        as an unclassified 500.
        """
        try:
            classification = self.classify(exc)
        except Exception:
            logger.exception("Failed to classify %s; reporting it as unclassified", type(exc).__name__)
            classification = Classification(
                FailureKind.UNCLASSIFIED, 500, FALLBACK_MESSAGE, {"error_type": type(exc).__name__}
            )
        record = CanonicalError(
            code=classification.status,
            message=classification.message,
            details=classification.details,
            request_id=request_id,
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            path=path,
        )

        level = logging.ERROR if record.code >= 500 else logging.WARNING
        unexpected = classification.kind is FailureKind.UNCLASSIFIED and isinstance(exc, BaseException)
        logger.log(
            level,
            "Request ID: %s | %s | Status: %d | Message: %s | Path: %s",
            request_id,
            classification.kind.value,
            record.code,
            record.message,
            path,
            exc_info=exc if unexpected else None,
            extra={
                "request_id": request_id,
                "kind": classification.kind.value,
                "status": record.code,
                "error_message": record.message,
                "path": path,
            },
        )
        return record
