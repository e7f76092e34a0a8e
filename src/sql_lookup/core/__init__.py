"""sql-lookup core -- ambient primitives shared by every layer.

Architecture::

    errors.py      Structured error hierarchy (SqlLookupError and subclasses)
    result.py      Result[T] envelope (Ok / Err)
    logging.py     structlog configuration and get_logger
    settings.py    Process settings (pydantic-settings, SQL_LOOKUP_ prefix)
    secrets.py     Password decryption and secret references
    timeout.py     Bounded execution for blocking calls
    database.py    Pool settings, engine factory, ConnectionPool
    health.py      Health models and the lock-guarded HealthMonitor
"""
