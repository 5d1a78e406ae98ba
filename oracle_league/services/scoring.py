from dataclasses import dataclass

BASE_POINTS = 10
ORACLE_BEAT_BONUS = 15


@dataclass(frozen=True)
class SubmissionScore:
    is_correct: bool
    base_points: int
    confidence_bonus: int
    oracle_beat_bonus: int
    points_earned: int
    confidence_accuracy: float

    @property
    def beat_oracle(self) -> bool:
        return self.oracle_beat_bonus > 0


def calculate_confidence_bonus(confidence: int) -> int:
    """1 punto extra por cada 10 de confianza (80 -> 8)."""
    return confidence // 10


def calculate_confidence_accuracy(confidence: int, is_correct: bool) -> float:
    """
    Distancia de calibración: 0.0 es perfecta (100% y acierto, o 0% y fallo),
    1.0 es la peor posible.
    """
    realized = 1.0 if is_correct else 0.0
    return abs(confidence / 100 - realized)


def score_submission(
    choice_index: int,
    confidence: int,
    oracle_choice_index: int,
    actual_result_index: int,
) -> SubmissionScore:
    """
    Puntúa una respuesta contra el resultado real.
    Función pura: mismos datos -> mismos puntos, sin tocar la DB.
    """
    is_correct = choice_index == actual_result_index

    base_points = BASE_POINTS if is_correct else 0
    confidence_bonus = calculate_confidence_bonus(confidence) if is_correct else 0

    # Bonus por ganar al Oráculo: acertar cuando él falla
    oracle_missed = oracle_choice_index != actual_result_index
    oracle_beat_bonus = ORACLE_BEAT_BONUS if (is_correct and oracle_missed) else 0

    return SubmissionScore(
        is_correct=is_correct,
        base_points=base_points,
        confidence_bonus=confidence_bonus,
        oracle_beat_bonus=oracle_beat_bonus,
        points_earned=base_points + confidence_bonus + oracle_beat_bonus,
        confidence_accuracy=calculate_confidence_accuracy(confidence, is_correct),
    )
