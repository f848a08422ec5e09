"""
Error taxonomy for the lookup registry.

Validation problems subclass ValueError and store failures subclass
RuntimeError so callers that only know the builtin types still catch them.
"""


class RegistryError(Exception):
    """Base class for every error raised by the registry."""


# ============================================================================
# VALIDATION (bad input, never retried)
# ============================================================================

class ValidationError(RegistryError, ValueError):
    pass


class InvalidTableName(ValidationError):
    pass


class InvalidColumnName(ValidationError):
    pass


class InvalidProjectName(ValidationError):
    pass


class UnknownColumnType(ValidationError):
    pass


class UnknownTemplate(ValidationError):
    pass


class ProtectedColumn(ValidationError):
    pass


class NoFieldsProvided(ValidationError):
    pass


class MissingRequiredField(ValidationError):
    pass


class MappingIncomplete(ValidationError):
    pass


class EmptyFile(ValidationError):
    pass


class MalformedCSV(ValidationError):
    pass


# ============================================================================
# NOT FOUND
# ============================================================================

class NotFoundError(RegistryError):
    pass


class NotALookupTable(NotFoundError):
    pass


class ColumnNotFound(NotFoundError):
    pass


class EntryNotFound(NotFoundError):
    pass


class ProjectNotFound(NotFoundError):
    pass


# ============================================================================
# CONFLICTS
# ============================================================================

class ConflictError(RegistryError):
    pass


class AlreadyExists(ConflictError):
    pass


class DuplicateCode(ConflictError):
    pass


# ============================================================================
# STORE FAILURES
# ============================================================================

class StorageError(RegistryError, RuntimeError):
    """The underlying store rejected a statement.

    The message carries the operation and the store's own error text.
    """


class PartialBatchError(RegistryError):
    """Raised on request by ImportResult.raise_for_errors()."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"{result.skipped} row(s) skipped during import: "
            + "; ".join(result.errors[:5])
        )
