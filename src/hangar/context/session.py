from __future__ import annotations

from psycopg2.extensions import TransactionRollbackError
from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import QueuePool

from hangar.context.core import StoppableService


from typing import Any


SERIALIZABLE = 'SERIALIZABLE'


def is_serialization_failure(exception: BaseException) -> bool:
    """ True if the given exception means that the transaction lost a race
    against another transaction and may be retried.

    """
    if isinstance(exception, StaleDataError):
        return True

    if not isinstance(exception, DBAPIError):
        return False

    if isinstance(exception.orig, TransactionRollbackError):
        return True

    # sqlite has no serialization failures, only a busy database
    return 'database is locked' in str(exception.orig)


class SessionProvider(StoppableService):
    """Global session utility. It provides a SERIALIZABLE session to hangar.
    If you want to override this provider, be sure to set the isolation_level
    to SERIALIZABLE as well.

    If you don't do that, hangar might let concurrent approvals interleave
    on databases that are accessed by more than one process!

    """

    def __init__(
        self,
        dsn: str,
        engine_config: dict[str, Any] | None = None,
        session_config: dict[str, Any] | None = None
    ):
        assert dsn, 'No dsn configured, see settings.dsn'

        url = make_url(dsn)
        engine_config = dict(engine_config or {})

        if url.get_backend_name() == 'postgresql':
            self.assert_valid_postgres_version(dsn)
        elif url.get_backend_name() == 'sqlite':
            engine_config.setdefault(
                'connect_args', {'check_same_thread': False}
            )

        self.dsn = dsn

        self.engine = create_engine(
            dsn, poolclass=QueuePool, pool_size=5, max_overflow=5,
            isolation_level=SERIALIZABLE,
            **engine_config
        )

        self.session = scoped_session(sessionmaker(
            bind=self.engine, **(session_config or {})
        ))

    def stop_service(self) -> None:
        """ Called by the hangar context when the session provider is being
        discarded (only in testing).

        This makes sure that replacing the session provider on the context
        doesn't leave behind any idle connections.

        """

        self.session.remove()
        self.engine.dispose()

    def get_postgres_version(self, dsn: str) -> tuple[str, int]:
        """ Returns the postgres version as a tuple (string, integer).

        Uses it's own connection to be independent from any session.

        """
        assert 'postgres' in dsn, 'Not a postgres database'

        query = text("""
            SELECT current_setting('server_version'),
                   current_setting('server_version_num')
        """)

        engine = create_engine(dsn)

        try:
            with engine.connect() as connection:
                result = connection.execute(query).first()
            assert result is not None
            version, number = result
            return version, int(number)
        finally:
            engine.dispose()

    def assert_valid_postgres_version(self, dsn: str) -> str:
        v, n = self.get_postgres_version(dsn)

        if n < 90100:
            raise RuntimeError(f'PostgreSQL 9.1+ is required, got {v}')

        return dsn
