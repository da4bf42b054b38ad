# ============================================================
# Ranking refinement (optional ML step) · Adaptation Engine
# ============================================================
# Un Ridge appris sur les adaptations réussies affine l'amplitude et la durée
# de la recommandation principale. Sans modèle, le moteur tourne sur les règles.

import logging
from typing import NamedTuple, Optional, Sequence

import joblib
import pandas as pd
from sklearn.linear_model import Ridge
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from adaptation.metrics import EFFECTIVE_THRESHOLD, clamp
from schemas.learning import AdaptationRecord
from schemas.profile import CompositeScores
from schemas.recommendation import ChangeTarget, PlanChange, Recommendation

logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# CONFIG
# ------------------------------------------------------------

FEATURES_REFINER = list(CompositeScores.model_fields)
TARGETS_REFINER = ["intensity_change", "duration_days"]
MIN_TRAINING_ROWS = 8


class RefinerPrediction(NamedTuple):
    intensity_change: float
    duration_days: float
    confidence: float


# ------------------------------------------------------------
# TRAINING
# ------------------------------------------------------------


def build_training_frame(records: Sequence[AdaptationRecord]) -> pd.DataFrame:
    """Une ligne par adaptation réussie : scores au moment de la décision -> paramètres retenus."""
    rows = []
    for record in records:
        if record.is_pending or record.effectiveness <= EFFECTIVE_THRESHOLD:
            continue
        row = record.scores.model_dump()
        row["intensity_change"] = record.recommendation.numeric_change(ChangeTarget.intensity) or 0.0
        row["duration_days"] = float(record.recommendation.duration_days)
        rows.append(row)

    return pd.DataFrame(rows, columns=FEATURES_REFINER + TARGETS_REFINER)


def train_refiner(records: Sequence[AdaptationRecord], path: str) -> float:
    """
    Entraîne et sauvegarde le pipeline. Retourne le score de validation (R², borné à 0..1),
    qui sert ensuite de confiance aux prédictions.
    """
    df = build_training_frame(records)
    if len(df) < MIN_TRAINING_ROWS:
        raise ValueError(f"need at least {MIN_TRAINING_ROWS} successful adaptations, got {len(df)}")

    X = df[FEATURES_REFINER]
    y = df[TARGETS_REFINER]

    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.25, random_state=0)
    pipeline = Pipeline([("scaler", StandardScaler()), ("model", Ridge(alpha=1.0))])
    pipeline.fit(X_train, y_train)
    score = clamp(float(pipeline.score(X_test, y_test)))

    # modèle final sur toutes les données
    pipeline.fit(X, y)
    joblib.dump({"pipeline": pipeline, "score": score, "rows": len(df)}, path)

    logger.info("refiner trained on %d adaptations (validation score %.2f)", len(df), score)
    return score


# ------------------------------------------------------------
# INFERENCE
# ------------------------------------------------------------


class JoblibRankingRefiner:
    def __init__(self, path: str):
        bundle = joblib.load(path)
        self.pipeline: Pipeline = bundle["pipeline"]
        self.score: float = bundle["score"]

    def predict(self, scores: CompositeScores, recommendation: Recommendation) -> RefinerPrediction:
        # 🔒 vérité ML : alignement strict sur les features vues à l'entraînement
        scaler = self.pipeline.named_steps["scaler"]
        feature_names = list(scaler.feature_names_in_)

        X = pd.DataFrame([scores.model_dump()])[feature_names]
        intensity_change, duration_days = self.pipeline.predict(X)[0]

        return RefinerPrediction(float(intensity_change), float(duration_days), self.score)


def apply_refinement(
    recommendations: list[Recommendation],
    prediction: Optional[RefinerPrediction],
    min_confidence: float,
) -> tuple[list[Recommendation], bool]:
    """
    Ajuste la recommandation principale si la confiance du modèle dépasse le seuil.
    Le modèle affine l'amplitude, il n'inverse jamais le sens d'un changement.
    """
    if not recommendations or prediction is None or prediction.confidence <= min_confidence:
        return recommendations, False

    top = recommendations[0]
    current = top.numeric_change(ChangeTarget.intensity)

    changes = list(top.changes)
    if current is not None and current * prediction.intensity_change > 0:
        changes = [
            PlanChange(target=c.target, adjustment=round(prediction.intensity_change, 1), exercise_ids=c.exercise_ids)
            if c.target == ChangeTarget.intensity and isinstance(c.adjustment, (int, float))
            else c
            for c in top.changes
        ]

    refined = top.model_copy(
        update={
            "changes": changes,
            "duration_days": max(1, int(round(prediction.duration_days))),
        }
    )
    return [refined, *recommendations[1:]], True
