# ============================================================
# Coaching narrative · Adaptation Engine
# ============================================================
# Le texte libre est délégué au modèle de langage ; les chiffres restent
# calculés côté backend. Si le modèle est absent ou en erreur, on renvoie
# un texte déterministe construit depuis les recommandations.
import logging
from typing import Callable, Optional, Sequence

import requests

from schemas.insight import AdaptationExplanation
from schemas.profile import CompositeScores
from schemas.recommendation import Recommendation

logger = logging.getLogger(__name__)

TextGenerator = Callable[[list[dict]], str]

SYSTEM_PROMPT = """
Tu es un coach sportif humain, calme et expérimenté.
Tu t’adresses à un adulte, sans jargon inutile.
Réponds en anglais, en 3 à 4 phrases maximum.

RÈGLES ABSOLUES :
- Tu n’inventes AUCUN chiffre : utilise uniquement ceux fournis.
- Tu ne changes PAS les recommandations, tu les expliques.
- Pas de diagnostic médical.
"""


def build_narrative_messages(
    recommendations: Sequence[Recommendation],
    scores: CompositeScores,
    explanation: Optional[AdaptationExplanation] = None,
) -> list[dict]:
    lines = [
        f"- [{rec.priority.value}] {rec.type.value} for {rec.duration_days} days: {rec.reason}"
        for rec in recommendations
    ]
    reason = explanation.primary_reason if explanation else "n/a"

    user_prompt = f"""
Données calculées (NE PAS MODIFIER) :
- Recovery index : {scores.recovery_index} %
- Engagement : {scores.engagement_score} %
- Motivation momentum : {scores.motivation_momentum} %
- Progress velocity : {scores.progress_velocity} %

Raison principale :
{reason}

Ajustements retenus :
{chr(10).join(lines)}

Tâche :
Explique ces ajustements à l’athlète avec bienveillance.
"""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def fallback_narrative(recommendations: Sequence[Recommendation]) -> str:
    if not recommendations:
        return "Your current plan is working well. Keep going and we'll keep monitoring your progress."

    top = recommendations[0]
    text = top.explanation
    if len(recommendations) > 1:
        others = ", ".join(rec.type.value.replace("_", " ") for rec in recommendations[1:])
        text += f" We'll also adjust: {others}."
    return text


def generate_narrative(
    recommendations: Sequence[Recommendation],
    scores: CompositeScores,
    explanation: Optional[AdaptationExplanation] = None,
    generate: Optional[TextGenerator] = None,
) -> str:
    if generate is None:
        return fallback_narrative(recommendations)

    try:
        text = generate(build_narrative_messages(recommendations, scores, explanation))
    except requests.RequestException as exc:
        logger.warning("narrative provider unreachable, using fallback: %s", exc)
        return fallback_narrative(recommendations)
    except Exception:
        logger.warning("narrative generation failed, using fallback", exc_info=True)
        return fallback_narrative(recommendations)

    if not isinstance(text, str):
        logger.warning("narrative generator returned %s, using fallback", type(text).__name__)
        return fallback_narrative(recommendations)

    return text.strip() or fallback_narrative(recommendations)
