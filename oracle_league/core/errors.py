# Taxonomía de errores del motor. Cada clase lleva su "kind" estable
# (lo que ve el cliente) y el status HTTP con el que se expone.


class OracleError(Exception):
    kind: str = "Internal"
    http_status: int = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.context}


# --- NO ENCONTRADO ---
class NotFound(OracleError):
    kind = "NotFound"
    http_status = 404


class PredictionNotFound(NotFound):
    def __init__(self, prediction_id: str):
        super().__init__("Predicción no encontrada", prediction_id=prediction_id)


class UserNotFound(NotFound):
    def __init__(self, user_id: int):
        super().__init__("Usuario no encontrado", user_id=user_id)


# --- ENTRADA INVÁLIDA (el cliente debe corregir y reenviar) ---
class InvalidSpec(OracleError):
    kind = "InvalidSpec"
    http_status = 422


class InvalidChoice(OracleError):
    kind = "InvalidChoice"
    http_status = 422


class InvalidConfidence(OracleError):
    kind = "InvalidConfidence"
    http_status = 422


class OutOfRange(OracleError):
    kind = "OutOfRange"
    http_status = 422


# --- RECHAZOS TERMINALES ---
class PredictionClosed(OracleError):
    kind = "PredictionClosed"
    http_status = 409

    def __init__(self, prediction_id: str, reason: str):
        super().__init__("Predicción cerrada", prediction_id=prediction_id, reason=reason)


class DuplicateSubmission(OracleError):
    kind = "DuplicateSubmission"
    http_status = 409

    def __init__(self, prediction_id: str, user_id: int):
        super().__init__(
            "Ya existe una respuesta de este usuario para esta predicción",
            prediction_id=prediction_id,
            user_id=user_id,
        )


class PredictionLocked(OracleError):
    kind = "PredictionLocked"
    http_status = 409

    def __init__(self, prediction_id: str):
        super().__init__(
            "La predicción ya tiene respuestas o está resuelta",
            prediction_id=prediction_id,
        )


class PredictionNotResolved(OracleError):
    kind = "InvalidState"
    http_status = 409

    def __init__(self, prediction_id: str):
        super().__init__("La predicción aún no está resuelta", prediction_id=prediction_id)


# --- SEÑAL IDEMPOTENTE (no es un error de aplicación) ---
class AlreadyResolved(OracleError):
    kind = "AlreadyResolved"
    http_status = 200

    def __init__(self, prediction_id: str):
        super().__init__("La predicción ya estaba resuelta", prediction_id=prediction_id)


# --- INTERNOS ---
class PartiallyScored(OracleError):
    kind = "PartiallyScored"
    http_status = 500

    def __init__(self, prediction_id: str, pending: int | None = None, unapplied: int | None = None):
        super().__init__(
            "Predicción resuelta pero sin puntuar por completo",
            prediction_id=prediction_id,
            pending=pending,
            unapplied=unapplied,
        )


class ImmutableRecord(OracleError):
    kind = "ImmutableRecord"
    http_status = 500


class TransientStorageError(OracleError):
    kind = "Transient"
    http_status = 503
