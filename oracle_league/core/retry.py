import functools
import logging

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from oracle_league.core.config import settings
from oracle_league.core.errors import TransientStorageError

logger = logging.getLogger(__name__)


def retry_transient(func=None, *, max_retries: int | None = None):
    """
    Reintenta la operación ante errores transitorios del almacenamiento
    (bloqueos, "database is locked", fallos de serialización) con backoff
    exponencial. Los errores de negocio (OracleError) se propagan tal cual.

    La función decorada debe ser reejecutable: cada intento abre y cierra
    su propia transacción. Si el primer argumento es una Session se hace
    rollback antes de reintentar.
    """
    if func is None:
        return functools.partial(retry_transient, max_retries=max_retries)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        # La política se lee en cada llamada para respetar cambios de settings
        retries = settings.STORAGE_MAX_RETRIES if max_retries is None else max_retries
        db = args[0] if args and isinstance(args[0], Session) else None

        def before_sleep(state):
            if db is not None:
                db.rollback()
            logger.warning(
                f"Reintento {state.attempt_number}/{retries} de {func.__name__} "
                f"en {state.next_action.sleep:.2f}s: {state.outcome.exception()}"
            )

        retrying = Retrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(
                multiplier=settings.STORAGE_INITIAL_BACKOFF,
                exp_base=settings.STORAGE_BACKOFF_MULTIPLIER,
            ),
            before_sleep=before_sleep,
        )

        try:
            return retrying(func, *args, **kwargs)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            if db is not None:
                db.rollback()
            raise TransientStorageError(
                f"{func.__name__} falló tras {retries} reintentos", cause=str(last_error)
            ) from last_error

    return wrapper
