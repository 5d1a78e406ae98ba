# Importa todos los modelos a la vez para que Base.metadata los conozca
from oracle_league.db.models.user import User  # noqa: F401
from oracle_league.db.models.prediction import Prediction  # noqa: F401
from oracle_league.db.models.submission import Submission  # noqa: F401
from oracle_league.db.models.user_statistics import UserStatistics, UserPredictionStats  # noqa: F401
