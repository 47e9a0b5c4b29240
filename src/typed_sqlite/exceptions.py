"""
Database-specific exception classes.

Every error raised by this package derives from DatabaseError and records
which operation failed, the SQL text when one was involved, and the engine's
result code and name when the driver reported them.
"""
import sqlite3

__all__ = [
    'DatabaseError',
    'OpenError',
    'CompileError',
    'ExecutionError',
    'MarshallingError',
    'MisuseError',
    'RollbackError',
    'from_driver_error',
]


class DatabaseError(Exception):
    """Base class for all typed_sqlite errors.
    """

    operation: str = 'unknown'

    def __init__(self, message: str, *, operation: str | None = None,
                 sql: str | None = None, errorcode: int | None = None,
                 errorname: str | None = None) -> None:
        super().__init__(message)
        if operation is not None:
            self.operation = operation
        self.sql = sql
        self.sqlite_errorcode = errorcode
        self.sqlite_errorname = errorname

    def __str__(self) -> str:
        message = super().__str__()
        if self.sqlite_errorname:
            message = f'{message} [{self.sqlite_errorname}]'
        if self.sql:
            message = f'{message}\nSQL: {self.sql}'
        return message


class OpenError(DatabaseError):
    """Database could not be opened under the requested mode.
    """

    operation = 'open'


class CompileError(DatabaseError):
    """SQL text failed to compile.
    """

    operation = 'prepare'


class ExecutionError(DatabaseError):
    """Stepping a statement reported something other than a row or done.

    Constraint violations and busy/locked databases land here.
    """

    operation = 'step'


class MarshallingError(DatabaseError):
    """Value could not be converted between Python and the column representation.
    """

    operation = 'decode'


class MisuseError(DatabaseError):
    """Caller broke a precondition of the API.

    Reading with no current row, touching an invalidated view and operating on
    an empty statement or closed connection all raise this.
    """

    operation = 'misuse'


class RollbackError(DatabaseError):
    """Compensating rollback of a savepoint failed.

    Never raised on its own by an atomic scope; it is attached to the original
    exception as ``rollback_error``.
    """

    operation = 'rollback'


def from_driver_error(cls: type[DatabaseError], err: Exception,
                      sql: str | None = None) -> DatabaseError:
    """Build one of our errors from a sqlite3 exception, keeping its code and name.
    """
    errorcode = getattr(err, 'sqlite_errorcode', None)
    errorname = getattr(err, 'sqlite_errorname', None)
    if errorname is None and isinstance(err, sqlite3.IntegrityError):
        errorname = 'SQLITE_CONSTRAINT'
    return cls(str(err), sql=sql, errorcode=errorcode, errorname=errorname)
