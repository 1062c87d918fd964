"""
Gatehouse — Exception Hierarchy and Failure Taxonomy
======================================================

What:  Application-specific exceptions plus the enumerations the Failure
       Normalizer uses to label what it caught.
How:   Business handlers raise these (or framework / persistence errors);
       the failure boundary classifies whatever escapes and turns it into a
       Canonical Error Record. Nothing in this module is ever sent raw.

Failure taxonomy:
    Decided before the handler runs (never raised):
    ├── PolicyDenied          → 403 "Not allowed by CORS"
    └── AdmissionExceeded     → 429 "Too many requests, please try again later."

    Caught at the terminal boundary:
    ├── HandlerHttpError      → status carried by the error
    ├── PersistenceConstraint → 409 / 404 / 400 / 400 / 500 (see PersistenceErrorKind)
    ├── InputValidation       → 422
    └── Unclassified          → 500

Exception Hierarchy:
    GatehouseError (base)
    ├── InputValidationError   → carries a list of FieldViolation
    └── PersistenceError       → carries an engine error code, meta and client version
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class FailureKind(str, enum.Enum):
    """Label attached to every classified handler failure (and its log line)."""

    HTTP = "HandlerHttpError"
    PERSISTENCE = "PersistenceConstraintError"
    VALIDATION = "InputValidationError"
    UNCLASSIFIED = "UnclassifiedError"


class PersistenceErrorKind(str, enum.Enum):
    UNIQUE_CONSTRAINT = "unique_constraint"
    RECORD_NOT_FOUND = "record_not_found"
    FOREIGN_KEY = "foreign_key_violation"
    VALUE_TOO_LONG = "value_too_long"
    UNRECOGNIZED = "unrecognized"


@dataclass
class FieldViolation:
    """
    One input validation failure.

    Attributes:
        property:    Name of the offending field.
        value:       The value that was rejected (may be None when missing).
        constraints: Constraint name → human-readable message.
        children:    Violations of nested fields under this one.
    """

    property: str
    value: Any = None
    constraints: Dict[str, str] = field(default_factory=dict)
    children: List["FieldViolation"] = field(default_factory=list)


class GatehouseError(Exception):
    """
    Base exception for all Gatehouse application errors.

    Attributes:
        message:  Human-readable description.
        context:  Additional debug info for logs.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InputValidationError(GatehouseError):
    """
    Raised by handlers that validate input themselves.

    The normalizer reports it as 422 "Validation failed" with every violation
    (and its nested children) flattened into `details.errors`.
    """

    def __init__(
        self,
        violations: List[FieldViolation],
        message: str = "Validation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.violations = list(violations)


class PersistenceError(GatehouseError):
    """
    A data-layer failure that carries the storage engine's own error code.

    Data access code that talks to an engine reporting coded errors (e.g.
    P2002 for a unique-constraint failure) wraps them in this type. The
    normalizer does not rely on the type, though: it recognizes any object
    exposing the same attributes.

    Attributes:
        code:            Engine error code such as "P2002".
        meta:            Engine-supplied metadata; `target` names the violated field(s).
        client_version:  Version of the engine client that produced the error.
    """

    def __init__(
        self,
        message: str = "Database error",
        code: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        client_version: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.code = code
        self.meta = meta or {}
        self.client_version = client_version
