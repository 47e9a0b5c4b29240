"""Logging and timing helpers shared by statements and connections."""
import logging
import time
from functools import wraps
from typing import Any

logger = logging.getLogger('typed_sqlite.sql')


def dumpsql(func):
    """Decorator for logging SQL statements and their bound parameters.

    Wraps Statement.step. The SQL is logged when a step starts the statement
    (the first step after prepare or reset); every step is timed and counted
    on the owning connection.
    """
    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any):
        native = self.native
        starting = not native.started and not native.done
        if starting and self.logs_sql:
            logger.debug(f'SQL:\n{native.sql}\nargs: {self.bound_args}')
        start = time.time()
        try:
            return func(self, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{native.sql}\nargs: {self.bound_args}')
            raise
        finally:
            elapsed = time.time() - start
            if self.connection is not None:
                self.connection.addcall(elapsed)
            if starting and self.logs_sql:
                logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper
