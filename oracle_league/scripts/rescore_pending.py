import argparse

from oracle_league.db.session import SessionLocal, init_db
from oracle_league.services.prediction_store import find_partially_scored
from oracle_league.services.resolution import rescore_unresolved_submissions
from oracle_league.services.user_stats import rebuild_user_statistics


def rescore_pending(rebuild_users: list[int] | None = None, season: int | None = None):
    """
    Recuperación de operador: puntúa las predicciones resueltas a medias y,
    opcionalmente, reconstruye las estadísticas de algunos usuarios.
    """
    init_db()
    db = SessionLocal()

    try:
        pending = find_partially_scored(db)
        if not pending:
            print("✅ No hay predicciones pendientes de puntuar")

        for prediction_id in pending:
            print(f"🔧 Repuntuando {prediction_id}...")
            report = rescore_unresolved_submissions(db, prediction_id)
            print(f"   ➡️  {report.scored} respuestas puntuadas, {report.stats_applied} deltas nuevos")

        if rebuild_users and season is not None:
            for user_id in rebuild_users:
                stats = rebuild_user_statistics(db, user_id, season)
                if stats:
                    print(f"🔁 Usuario {user_id}: {stats.total_points} pts, {stats.total_predictions} respuestas")
                else:
                    print(f"🔁 Usuario {user_id}: sin respuestas puntuadas en {season}")

    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Puntúa respuestas pendientes de predicciones resueltas")
    parser.add_argument("--season", type=int, help="Temporada para reconstruir estadísticas")
    parser.add_argument("--user", type=int, action="append", dest="users", help="Usuario a reconstruir (repetible)")
    args = parser.parse_args()

    rescore_pending(args.users, args.season)
