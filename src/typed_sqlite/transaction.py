"""
Savepoint-based atomic scopes.

Each scope takes the next value of its connection's scope counter and
brackets the unit of work with three statements:

    savepoint s<id>
    rollback transaction to savepoint s<id>    (on failure, then release)
    release savepoint s<id>                    (on success)

Scope ids are never reused on a connection, so an inner rollback only
undoes work since its own savepoint and leaves outer scopes intact.
"""
import enum
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Self

from typed_sqlite.exceptions import RollbackError

if TYPE_CHECKING:
    from typed_sqlite.connection import Connection

logger = logging.getLogger(__name__)

__all__ = ['Savepoint', 'ScopeOutcome', 'atomic']


class ScopeOutcome(enum.Enum):
    """How a savepoint scope ended.
    """
    OPEN = 'open'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled back'
    ROLLBACK_FAILED = 'rollback failed'


def _run(cn: 'Connection', sql: str) -> None:
    with cn.execute(sql) as stmt:
        while stmt.step():
            pass


class Savepoint:
    """Context manager for one nested savepoint scope.

    Commits (releases) when the block completes and rolls back when it
    raises anything, re-raising the original exception unchanged. If the
    rollback itself fails, the original exception still propagates and the
    secondary failure is attached to it as ``rollback_error`` and as a note.

    Examples
        with Savepoint(cn):
            cn.run('insert into foo values (?)', 1)
            with Savepoint(cn):
                cn.run('insert into foo values (?)', 2)
                raise ValueError    # undoes the second insert only
    """

    def __init__(self, cn: 'Connection') -> None:
        self.connection = cn
        self.scope_id: int | None = None
        self.outcome = ScopeOutcome.OPEN
        self.rollback_error: RollbackError | None = None

    @property
    def name(self) -> str:
        return f's{self.scope_id}'

    @property
    def begin_sql(self) -> str:
        return f'savepoint {self.name}'

    @property
    def rollback_sql(self) -> str:
        return f'rollback transaction to savepoint {self.name}'

    @property
    def commit_sql(self) -> str:
        return f'release savepoint {self.name}'

    def __enter__(self) -> Self:
        if self.scope_id is not None:
            raise RuntimeError('Savepoint scopes cannot be re-entered')
        self.scope_id = self.connection.next_scope_id()
        _run(self.connection, self.begin_sql)
        self.connection.depth += 1
        logger.debug(f'Started savepoint {self.name} at depth {self.connection.depth}')
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None,
                 exc_tb: Any | None) -> bool:
        self.connection.depth -= 1
        if exc_type is None:
            _run(self.connection, self.commit_sql)
            self.outcome = ScopeOutcome.COMMITTED
            logger.debug(f'Released savepoint {self.name}')
            return False

        logger.warning(f'Rolling back savepoint {self.name} after {exc_type.__name__}')
        try:
            _run(self.connection, self.rollback_sql)
            _run(self.connection, self.commit_sql)
        except Exception as e:
            self.outcome = ScopeOutcome.ROLLBACK_FAILED
            self.rollback_error = RollbackError(
                f'rollback of savepoint {self.name} failed: {e}', sql=self.rollback_sql)
            self.rollback_error.__cause__ = e
            if exc_val is not None:
                exc_val.rollback_error = self.rollback_error
                exc_val.add_note(f'rollback of savepoint {self.name} also failed: {e}')
            logger.error(f'Rollback of savepoint {self.name} failed: {e}')
        else:
            self.outcome = ScopeOutcome.ROLLED_BACK
        return False


def atomic(cn: 'Connection', unit_of_work: Callable[[], Any]) -> None:
    """Run ``unit_of_work`` inside a new savepoint scope on ``cn``.

    Returns nothing when the scope committed; otherwise the unit of work's
    exception propagates after the rollback.
    """
    with Savepoint(cn):
        unit_of_work()
