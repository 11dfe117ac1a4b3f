"""Veritabanı bağlantı adaptörleri

Güvenli yürütücü motordan bağımsız tek bir arayüz görür: sorgu çalıştırma,
salt okunur transaction açma, transaction'a yerel oturum değişkeni ve
zaman aşımı ayarlama, (destekleniyorsa) authorizer callback'i kurma.
"""

import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.errors
from psycopg2.extensions import TRANSACTION_STATUS_IDLE
from psycopg2.extras import RealDictCursor

from ..config import mask_uri, settings
from ..enums import Engine
from ..utils.logger import logger

Columns = List[str]
Rows = List[Dict[str, Any]]
Authorizer = Callable[[int, Optional[str], Optional[str], Optional[str], Optional[str]], int]


class DatabaseConnection:
    """Motordan bağımsız bağlantı arayüzü"""

    engine: Engine
    error_class = Exception

    @property
    def supports_authorizer(self) -> bool:
        return False

    def connect(self):
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError

    def fetch(self, sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[Columns, Rows]:
        """
        Sorguyu çalıştır ve (kolonlar, satırlar) döndür

        Satırlar kolon adı -> değer sözlükleridir.
        """
        raise NotImplementedError

    def read_only_transaction(self):
        """Salt okunur transaction context manager'ı döndür"""
        raise NotImplementedError

    def set_session_variable(self, name: str, value: str) -> None:
        raise NotImplementedError

    def set_timeouts(self, statement_timeout_ms: Optional[int], lock_timeout_ms: Optional[int]) -> None:
        raise NotImplementedError

    @property
    def current_authorizer(self) -> Optional[Authorizer]:
        return None

    def set_authorizer(self, callback: Optional[Authorizer]) -> None:
        raise NotImplementedError(f"{self.engine.value} motoru authorizer desteklemiyor")

    def disable_extension_loading(self) -> None:
        """Eklenti yüklemeyi kapat (destekleyen motorlarda)"""

    def is_timeout_error(self, error: BaseException) -> bool:
        return False

    def is_authorization_error(self, error: BaseException) -> bool:
        return False

    def test_connection(self) -> bool:
        """
        Veritabanı bağlantısını test et

        Returns:
            True ise bağlantı başarılı
        """
        try:
            _, rows = self.fetch("SELECT 1 AS ok")
            logger.info("Database connection test successful", engine=self.engine.value, result=rows)
            return True
        except self.error_class as e:
            logger.error("Database connection test failed", engine=self.engine.value, error=str(e))
            return False

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.disconnect()


class PostgresConnection(DatabaseConnection):
    """
    PostgreSQL (psycopg2) bağlantı adaptörü

    Salt okunur blok, bağlantı boştaysa yeni bir transaction, açık bir
    transaction varsa bir SAVEPOINT içinde çalışır ve her durumda geri
    alınır; ``SET LOCAL`` ayarları bloğun dışına sızmaz.
    """

    engine = Engine.POSTGRES
    error_class = psycopg2.Error

    SAVEPOINT_NAME = "logica_guard_read_only"

    def __init__(self, dsn: Optional[str] = None, connection=None):
        """
        Args:
            dsn: Bağlantı URI'si (None ise ayarlardaki DATABASE_URI)
            connection: Hazır psycopg2 bağlantısı (havuzdan alınmış vb.)
        """
        self.dsn = dsn or settings.database_uri
        self._connection = connection
        self._owns_connection = connection is None
        logger.debug("PostgresConnection initialized", external_connection=connection is not None)

    def connect(self):
        """
        Veritabanına bağlan

        Raises:
            psycopg2.Error: Bağlantı hatası durumunda
        """
        try:
            if self._connection is None or self._connection.closed:
                self._connection = psycopg2.connect(self.dsn)
                self._owns_connection = True
                logger.info("Database connection established", engine=self.engine.value, uri=mask_uri(self.dsn))
            return self._connection
        except psycopg2.Error as e:
            logger.error("Database connection failed", engine=self.engine.value, uri=mask_uri(self.dsn), error=str(e))
            raise

    def disconnect(self):
        """Veritabanı bağlantısını kapat (yalnızca kendi açtığı bağlantıyı)"""
        if self._owns_connection and self._connection is not None and not self._connection.closed:
            self._connection.close()
            logger.info("Database connection closed", engine=self.engine.value)
            self._connection = None

    def _execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        conn = self.connect()
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
        finally:
            cursor.close()

    def fetch(self, sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[Columns, Rows]:
        conn = self.connect()
        cursor = conn.cursor(cursor_factory=RealDictCursor)
        try:
            cursor.execute(sql, params)
            if cursor.description is None:
                return [], []
            columns = [column[0] for column in cursor.description]
            return columns, [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    @contextmanager
    def read_only_transaction(self) -> Generator[None, None, None]:
        conn = self.connect()
        nested = conn.get_transaction_status() != TRANSACTION_STATUS_IDLE

        if nested:
            self._execute(f"SAVEPOINT {self.SAVEPOINT_NAME}")
        elif conn.autocommit:
            self._execute("BEGIN")
        logger.debug("Read-only transaction opened", engine=self.engine.value, nested=nested)

        try:
            self._execute("SET LOCAL transaction_read_only = on")
            yield
        finally:
            if nested:
                self._execute(f"ROLLBACK TO SAVEPOINT {self.SAVEPOINT_NAME}")
                self._execute(f"RELEASE SAVEPOINT {self.SAVEPOINT_NAME}")
            elif conn.autocommit:
                self._execute("ROLLBACK")
            else:
                conn.rollback()
            logger.debug("Read-only transaction rolled back", engine=self.engine.value, nested=nested)

    def set_session_variable(self, name: str, value: str) -> None:
        self._execute("SELECT set_config(%s, %s, true)", (name, str(value)))

    def set_timeouts(self, statement_timeout_ms: Optional[int], lock_timeout_ms: Optional[int]) -> None:
        if statement_timeout_ms is not None:
            self._execute("SELECT set_config('statement_timeout', %s, true)", (str(int(statement_timeout_ms)),))
        if lock_timeout_ms is not None:
            self._execute("SELECT set_config('lock_timeout', %s, true)", (str(int(lock_timeout_ms)),))

    def is_timeout_error(self, error: BaseException) -> bool:
        return isinstance(error, (psycopg2.errors.QueryCanceled, psycopg2.errors.LockNotAvailable))

    def is_authorization_error(self, error: BaseException) -> bool:
        return isinstance(error, psycopg2.errors.InsufficientPrivilege)


class SQLiteConnection(DatabaseConnection):
    """
    SQLite (sqlite3) bağlantı adaptörü

    SQLite'ta satır seviyesinde güvenlik olmadığından oturum değişkenleri
    yalnızca adaptör üzerinde saklanır. Statement timeout bir progress
    handler ile uygulanır.
    """

    engine = Engine.SQLITE
    error_class = sqlite3.Error

    # Progress handler'ın kaç VM adımında bir çağrılacağı
    PROGRESS_STEPS = 1000
    SQLITE_AUTH = 23

    def __init__(self, path: Optional[str] = None, connection: Optional[sqlite3.Connection] = None):
        """
        Args:
            path: Veritabanı dosyası (None ise ":memory:")
            connection: Hazır sqlite3 bağlantısı
        """
        self.path = path or ":memory:"
        self._connection = connection
        self._owns_connection = connection is None
        self._authorizer: Optional[Authorizer] = None
        self._progress_handler: Optional[Tuple[Callable[[], int], int]] = None
        self.session_variables: Dict[str, str] = {}
        logger.debug("SQLiteConnection initialized", path=self.path, external_connection=connection is not None)

    @property
    def supports_authorizer(self) -> bool:
        return True

    @property
    def connection(self) -> sqlite3.Connection:
        return self.connect()

    def connect(self) -> sqlite3.Connection:
        try:
            if self._connection is None:
                self._connection = sqlite3.connect(self.path)
                self._owns_connection = True
                logger.info("Database connection established", engine=self.engine.value)
            return self._connection
        except sqlite3.Error as e:
            logger.error("Database connection failed", engine=self.engine.value, error=str(e))
            raise

    def disconnect(self):
        if self._owns_connection and self._connection is not None:
            self._connection.close()
            logger.info("Database connection closed", engine=self.engine.value)
            self._connection = None

    def _scalar(self, sql: str) -> Any:
        row = self.connect().execute(sql).fetchone()
        return row[0] if row else None

    def fetch(self, sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[Columns, Rows]:
        cursor = self.connect().execute(sql, tuple(params or ()))
        try:
            if cursor.description is None:
                return [], []
            columns = [column[0] for column in cursor.description]
            return columns, [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    @contextmanager
    def read_only_transaction(self) -> Generator[None, None, None]:
        conn = self.connect()
        previous_query_only = self._scalar("PRAGMA query_only")
        previous_busy_timeout = self._scalar("PRAGMA busy_timeout")
        previous_variables = dict(self.session_variables)
        previous_handler = self._progress_handler

        conn.execute("PRAGMA query_only = ON")
        logger.debug("Read-only transaction opened", engine=self.engine.value)
        try:
            yield
        finally:
            if self._progress_handler is not previous_handler:
                self.set_progress_handler(*(previous_handler or (None, 0)))
            conn.execute(f"PRAGMA busy_timeout = {int(previous_busy_timeout or 0)}")
            conn.execute(f"PRAGMA query_only = {'ON' if previous_query_only else 'OFF'}")
            self.session_variables = previous_variables
            logger.debug("Read-only transaction closed", engine=self.engine.value)

    def set_session_variable(self, name: str, value: str) -> None:
        self.session_variables[name] = str(value)

    def set_timeouts(self, statement_timeout_ms: Optional[int], lock_timeout_ms: Optional[int]) -> None:
        conn = self.connect()
        if lock_timeout_ms is not None:
            conn.execute(f"PRAGMA busy_timeout = {int(lock_timeout_ms)}")
        if statement_timeout_ms:
            deadline = time.monotonic() + statement_timeout_ms / 1000.0

            def _abort_after_deadline() -> int:
                # Sıfır dışı dönüş değeri çalışan ifadeyi iptal eder
                return 1 if time.monotonic() > deadline else 0

            self.set_progress_handler(_abort_after_deadline, self.PROGRESS_STEPS)

    @property
    def current_authorizer(self) -> Optional[Authorizer]:
        return self._authorizer

    def set_authorizer(self, callback: Optional[Authorizer]) -> None:
        self.connect().set_authorizer(callback)
        self._authorizer = callback

    @property
    def current_progress_handler(self) -> Optional[Tuple[Callable[[], int], int]]:
        return self._progress_handler

    def set_progress_handler(self, handler: Optional[Callable[[], int]], n: int = 0) -> None:
        """
        Progress handler'ı kur (None ise kaldır)

        Salt okunur blok bu metotla kurulan handler'ı blok sonunda geri
        yükler. sqlite3 bağlantısına doğrudan kurulan handler okunamaz ve
        statement timeout'lu bir bloktan sonra kaldırılmış olur.
        """
        self.connect().set_progress_handler(handler, n)
        self._progress_handler = (handler, n) if handler is not None else None

    def disable_extension_loading(self) -> None:
        conn = self.connect()
        # Eklenti desteği olmadan derlenmiş Python'da metot bulunmaz
        if hasattr(conn, "enable_load_extension"):
            conn.enable_load_extension(False)

    def is_timeout_error(self, error: BaseException) -> bool:
        if not isinstance(error, sqlite3.OperationalError):
            return False
        message = str(error).lower()
        return "interrupted" in message or "database is locked" in message

    def is_authorization_error(self, error: BaseException) -> bool:
        if not isinstance(error, sqlite3.DatabaseError):
            return False
        if getattr(error, "sqlite_errorcode", None) == self.SQLITE_AUTH:
            return True
        # Okuma reddi "access to x.y is prohibited", diğerleri "not authorized"
        message = str(error).lower()
        return "not authorized" in message or "prohibited" in message
