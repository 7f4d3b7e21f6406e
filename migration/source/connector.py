"""
Connection to the legacy SQL Server source.

Opens one pooled ``mssql+pyodbc`` engine per process, verifies it, and maps
driver failures onto the SourceConnectionError family so operators get an
actionable code (ESOCKET, ELOGIN, ETIMEOUT, EINSTLOOKUP).
"""

from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import threading

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from core.config import Settings
from core.exceptions import (
    IntrospectionError,
    SourceAuthenticationError,
    SourceConnectionError,
    SourceInstanceLookupError,
    SourceNetworkError,
    SourceStreamError,
    SourceTimeoutError,
)
from migration.source.stream import SourceRowStream

logger = logging.getLogger(__name__)


def _statement(query):
    return text(query) if isinstance(query, str) else query


def _driver_details(error: Exception) -> tuple:
    """Extract (sqlstate, message) from a wrapped pyodbc error."""
    orig = getattr(error, "orig", None) or error
    args = getattr(orig, "args", ()) or ()
    sqlstate = ""
    if len(args) >= 2 and isinstance(args[0], str):
        sqlstate = args[0]
        message = " ".join(str(a) for a in args[1:])
    else:
        message = str(orig)
    return sqlstate.upper(), message


def classify_connection_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> SourceConnectionError:
    """
    Map a driver failure to the matching SourceConnectionError subclass.

    Order matters: instance lookup messages also mention the network, and a
    login timeout carries HYT00 rather than an 08xxx state.
    """
    sqlstate, message = _driver_details(error)
    lowered = message.lower()
    context = dict(context or {})
    context["sqlstate"] = sqlstate or None

    if "locating server/instance" in lowered or "instance specified" in lowered:
        cls = SourceInstanceLookupError
    elif sqlstate == "28000" or "login failed" in lowered:
        cls = SourceAuthenticationError
    elif sqlstate in ("HYT00", "HYT01") or "timeout" in lowered or "timed out" in lowered:
        cls = SourceTimeoutError
    elif sqlstate.startswith("08") or "tcp provider" in lowered or "network" in lowered:
        cls = SourceNetworkError
    else:
        cls = SourceConnectionError

    return cls(f"{cls.hint}: {message}", context=context, original_exception=error)


class SourceConnector:
    """
    Owns the source engine and exposes parameterised reads.

    The engine is created lazily on first ``open()`` and reused across runs;
    ``close()`` disposes the pool and belongs to process shutdown.
    """

    def __init__(self, settings: Settings, engine_factory: Callable[..., Engine] = create_engine):
        self.settings = settings
        self._engine_factory = engine_factory
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def build_url(self) -> URL:
        s = self.settings
        query = {
            "driver": s.MSSQL_DRIVER,
            "Encrypt": "yes" if s.MSSQL_ENCRYPT else "no",
            "TrustServerCertificate": "yes" if s.MSSQL_TRUST_SERVER_CERTIFICATE else "no",
            "LoginTimeout": str(s.MSSQL_LOGIN_TIMEOUT),
        }
        return URL.create(
            "mssql+pyodbc",
            username=s.MSSQL_USERNAME,
            password=s.MSSQL_PASSWORD,
            host=s.MSSQL_SERVER,
            port=s.MSSQL_PORT,
            database=s.MSSQL_DATABASE,
            query=query,
        )

    def _context(self) -> Dict[str, Any]:
        return {"server": self.settings.MSSQL_SERVER, "database": self.settings.MSSQL_DATABASE}

    def _verify(self, engine: Engine) -> None:
        """Run SELECT 1; driver failures surface as classified connection errors."""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except DBAPIError as e:
            error = classify_connection_error(e, self._context())
            logger.error(
                f"Source connection failed [{error.code}]: {error.message}",
                extra={"error_context": error.to_dict()}
            )
            raise error

    def open(self, verify: bool = False) -> Engine:
        """
        Create (once) and verify the source engine.

        A cached engine is returned as is unless ``verify`` is set, in which
        case the source is pinged again so an outage after the first connect
        is reported as a connection error.
        """
        with self._lock:
            if self._engine is not None:
                if verify:
                    self._verify(self._engine)
                return self._engine

            url = self.build_url()
            logger.info(f"Connecting to source: {url.render_as_string(hide_password=True)}")

            engine = self._engine_factory(
                url,
                pool_size=self.settings.MSSQL_POOL_SIZE,
                pool_pre_ping=True,
            )
            try:
                self._verify(engine)
            except SourceConnectionError:
                engine.dispose()
                raise

            self._engine = engine
            logger.info("Source connection established")
            return engine

    async def open_async(self) -> Engine:
        """Open and ping the source; used before a run starts and by health checks."""
        return await asyncio.to_thread(self.open, True)

    def fetch_all(self, query, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        engine = self.open()
        try:
            with engine.connect() as conn:
                result = conn.execute(_statement(query), params or {})
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise IntrospectionError(
                "Source query failed",
                context={"query": str(query)},
                original_exception=e
            )

    def scalar(self, query, params: Optional[Dict[str, Any]] = None) -> Any:
        engine = self.open()
        try:
            with engine.connect() as conn:
                return conn.execute(_statement(query), params or {}).scalar()
        except SQLAlchemyError as e:
            raise IntrospectionError(
                "Source query failed",
                context={"query": str(query)},
                original_exception=e
            )

    def _open_cursor(self, query, params: Optional[Dict[str, Any]]):
        engine = self.open()
        conn = engine.connect()
        try:
            result = conn.execution_options(stream_results=True).execute(_statement(query), params or {})
        except SQLAlchemyError:
            conn.close()
            raise
        return conn, result

    async def stream(
        self,
        query,
        params: Optional[Dict[str, Any]] = None,
        fetch_size: Optional[int] = None,
    ) -> SourceRowStream:
        """Open a server-side cursor and wrap it in a SourceRowStream."""
        try:
            conn, result = await asyncio.to_thread(self._open_cursor, query, params)
        except SQLAlchemyError as e:
            raise SourceStreamError(
                "Could not open source cursor",
                context={"query": str(query)},
                original_exception=e
            )
        return SourceRowStream(conn, result, fetch_size or self.settings.SOURCE_FETCH_SIZE)

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
                logger.info("Source connection pool disposed")
