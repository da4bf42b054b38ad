import logging
import threading
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from adaptation.errors import PersistenceError, StaleWriteError
from models.adaptation import (
    AdaptationAnalyticsModel,
    AdaptationRecordModel,
    RuleSetAssignmentModel,
    RuleSetVersionModel,
    RuleWeightModel,
    UserProfileModel,
)
from schemas.learning import (
    AdaptationAnalytics,
    AdaptationRecord,
    RuleSetVersion,
    RuleWeightState,
)
from schemas.profile import UserProfile
from schemas.recommendation import RecommendationType

logger = logging.getLogger(__name__)

ANALYTICS_ROW_ID = 1


# ======================================================
# 🧠 IN-MEMORY STORE (tests, dev)
# ======================================================


class InMemoryAdaptationStore:
    """
    Store clé-valeur en mémoire, même contrat que SqlAdaptationStore.
    Les objets stockés sont des modèles pydantic gelés : pas de copie nécessaire.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._profiles: dict[str, UserProfile] = {}
        self._records: dict[str, dict[str, AdaptationRecord]] = {}
        self._weights: dict[RecommendationType, RuleWeightState] = {}
        self._rule_sets: dict[str, RuleSetVersion] = {}
        self._assignments: dict[str, str] = {}
        self._analytics: Optional[AdaptationAnalytics] = None

    # ---------- profils ----------
    def load_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def save_profile(self, profile: UserProfile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def list_user_ids(self) -> list[str]:
        return sorted(self._profiles)

    # ---------- historique ----------
    def append_record(self, record: AdaptationRecord) -> None:
        with self._lock:
            self._records.setdefault(record.user_id, {})[record.id] = record

    def get_record(self, user_id: str, record_id: str) -> Optional[AdaptationRecord]:
        return self._records.get(user_id, {}).get(record_id)

    def complete_record(self, record: AdaptationRecord) -> None:
        """Point update by id; fails if an outcome was already attached."""
        with self._lock:
            current = self._records.get(record.user_id, {}).get(record.id)
            if current is None:
                raise PersistenceError(f"unknown adaptation record {record.id}")
            if not current.is_pending:
                raise StaleWriteError(f"adaptation_records:{record.id}", 0, 1)
            self._records[record.user_id][record.id] = record

    def load_records(self, user_id: str) -> list[AdaptationRecord]:
        records = self._records.get(user_id, {}).values()
        return sorted(records, key=lambda r: r.timestamp)

    # ---------- poids ----------
    def load_weights(self) -> dict[RecommendationType, RuleWeightState]:
        return dict(self._weights)

    def load_weight(self, rec_type: RecommendationType) -> Optional[RuleWeightState]:
        return self._weights.get(rec_type)

    def save_weight(self, state: RuleWeightState, expected_version: int) -> RuleWeightState:
        key = state.recommendation_type
        with self._lock:
            current = self._weights.get(key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise StaleWriteError(f"rule_weights:{key.value}", expected_version, actual)

            saved = state.model_copy(update={"version": expected_version + 1})
            self._weights[key] = saved
            return saved

    # ---------- versions ----------
    def load_rule_sets(self) -> list[RuleSetVersion]:
        return list(self._rule_sets.values())

    def save_rule_set(self, version: RuleSetVersion) -> None:
        with self._lock:
            self._rule_sets[version.version_id] = version

    def load_assignments(self) -> dict[str, str]:
        return dict(self._assignments)

    def save_assignments(self, assignments: Mapping[str, str]) -> None:
        with self._lock:
            self._assignments = dict(assignments)

    # ---------- analytics ----------
    def load_analytics(self) -> Optional[AdaptationAnalytics]:
        return self._analytics

    def save_analytics(self, analytics: AdaptationAnalytics) -> None:
        self._analytics = analytics


# ======================================================
# 🗄️ SQL STORE (SQLAlchemy)
# ======================================================


class SqlAdaptationStore:
    """
    Source of truth persistée.

    - un document JSON par objet (profil, record, poids, version)
    - poids : colonne `version` pour l'écriture optimiste
    - toute erreur SQLAlchemy remonte en PersistenceError
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _run(self, fn):
        db: Session = self._session_factory()
        try:
            return fn(db)
        except StaleWriteError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(str(exc)) from exc
        finally:
            db.close()

    # ---------- profils ----------
    def load_profile(self, user_id: str) -> Optional[UserProfile]:
        def query(db):
            row = db.query(UserProfileModel).filter(UserProfileModel.user_id == user_id).first()
            if not row:
                return None
            return UserProfile.model_validate(row.profile_json)

        return self._run(query)

    def save_profile(self, profile: UserProfile) -> None:
        payload = profile.model_dump(mode="json")

        def upsert(db):
            row = db.query(UserProfileModel).filter(UserProfileModel.user_id == profile.user_id).first()
            if row:
                row.profile_json = payload
                row.updated_at = profile.updated_at or row.updated_at
            else:
                row = UserProfileModel(user_id=profile.user_id, profile_json=payload)
                if profile.updated_at:
                    row.updated_at = profile.updated_at
                db.add(row)
            db.commit()

        self._run(upsert)

    def list_user_ids(self) -> list[str]:
        def query(db):
            rows = db.query(UserProfileModel.user_id).order_by(UserProfileModel.user_id).all()
            return [user_id for (user_id,) in rows]

        return self._run(query)

    # ---------- historique ----------
    def append_record(self, record: AdaptationRecord) -> None:
        def insert(db):
            db.add(
                AdaptationRecordModel(
                    id=record.id,
                    user_id=record.user_id,
                    timestamp=record.timestamp,
                    recommendation_type=record.recommendation.type.value,
                    record_json=record.model_dump(mode="json"),
                    completed=not record.is_pending,
                )
            )
            db.commit()

        self._run(insert)

    def get_record(self, user_id: str, record_id: str) -> Optional[AdaptationRecord]:
        def query(db):
            row = (
                db.query(AdaptationRecordModel)
                .filter(
                    AdaptationRecordModel.id == record_id,
                    AdaptationRecordModel.user_id == user_id,
                )
                .first()
            )
            return AdaptationRecord.model_validate(row.record_json) if row else None

        return self._run(query)

    def complete_record(self, record: AdaptationRecord) -> None:
        def update(db):
            updated = (
                db.query(AdaptationRecordModel)
                .filter(
                    AdaptationRecordModel.id == record.id,
                    AdaptationRecordModel.completed.is_(False),
                )
                .update(
                    {"record_json": record.model_dump(mode="json"), "completed": True},
                    synchronize_session=False,
                )
            )
            if not updated:
                # déjà complété par un autre appel (ou id inconnu)
                raise StaleWriteError(f"adaptation_records:{record.id}", 0, 1)
            db.commit()

        self._run(update)

    def load_records(self, user_id: str) -> list[AdaptationRecord]:
        def query(db):
            rows = (
                db.query(AdaptationRecordModel)
                .filter(AdaptationRecordModel.user_id == user_id)
                .order_by(AdaptationRecordModel.timestamp)
                .all()
            )
            return [AdaptationRecord.model_validate(row.record_json) for row in rows]

        return self._run(query)

    # ---------- poids ----------
    @staticmethod
    def _weight_from_row(row: RuleWeightModel) -> RuleWeightState:
        return RuleWeightState.model_validate({**row.state_json, "version": row.version})

    def load_weights(self) -> dict[RecommendationType, RuleWeightState]:
        def query(db):
            states = [self._weight_from_row(row) for row in db.query(RuleWeightModel).all()]
            return {state.recommendation_type: state for state in states}

        return self._run(query)

    def load_weight(self, rec_type: RecommendationType) -> Optional[RuleWeightState]:
        def query(db):
            row = (
                db.query(RuleWeightModel)
                .filter(RuleWeightModel.recommendation_type == rec_type.value)
                .first()
            )
            return self._weight_from_row(row) if row else None

        return self._run(query)

    def save_weight(self, state: RuleWeightState, expected_version: int) -> RuleWeightState:
        key = state.recommendation_type.value
        saved = state.model_copy(update={"version": expected_version + 1})
        payload = saved.model_dump(mode="json")

        def write(db):
            if expected_version == 0:
                db.add(RuleWeightModel(recommendation_type=key, state_json=payload, version=1))
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise StaleWriteError(f"rule_weights:{key}", expected_version, None)
                return saved

            updated = (
                db.query(RuleWeightModel)
                .filter(
                    RuleWeightModel.recommendation_type == key,
                    RuleWeightModel.version == expected_version,
                )
                .update(
                    {"state_json": payload, "version": expected_version + 1},
                    synchronize_session=False,
                )
            )
            if not updated:
                row = db.query(RuleWeightModel).filter(RuleWeightModel.recommendation_type == key).first()
                raise StaleWriteError(f"rule_weights:{key}", expected_version, row.version if row else None)

            db.commit()
            return saved

        return self._run(write)

    # ---------- versions ----------
    def load_rule_sets(self) -> list[RuleSetVersion]:
        def query(db):
            return [RuleSetVersion.model_validate(row.version_json) for row in db.query(RuleSetVersionModel).all()]

        return self._run(query)

    def save_rule_set(self, version: RuleSetVersion) -> None:
        payload = version.model_dump(mode="json")

        def upsert(db):
            row = db.query(RuleSetVersionModel).filter(RuleSetVersionModel.version_id == version.version_id).first()
            if row:
                row.version_json = payload
                row.retired_at = version.retired_at
            else:
                db.add(
                    RuleSetVersionModel(
                        version_id=version.version_id,
                        version_json=payload,
                        retired_at=version.retired_at,
                    )
                )
            db.commit()

        self._run(upsert)

    def load_assignments(self) -> dict[str, str]:
        def query(db):
            return {row.user_id: row.version_id for row in db.query(RuleSetAssignmentModel).all()}

        return self._run(query)

    def save_assignments(self, assignments: Mapping[str, str]) -> None:
        def replace(db):
            db.query(RuleSetAssignmentModel).delete()
            for user_id, version_id in assignments.items():
                db.add(RuleSetAssignmentModel(user_id=user_id, version_id=version_id))
            db.commit()

        self._run(replace)

    # ---------- analytics ----------
    def load_analytics(self) -> Optional[AdaptationAnalytics]:
        def query(db):
            row = db.get(AdaptationAnalyticsModel, ANALYTICS_ROW_ID)
            return AdaptationAnalytics.model_validate(row.analytics_json) if row else None

        return self._run(query)

    def save_analytics(self, analytics: AdaptationAnalytics) -> None:
        payload = analytics.model_dump(mode="json")

        def upsert(db):
            row = db.get(AdaptationAnalyticsModel, ANALYTICS_ROW_ID)
            if row:
                row.analytics_json = payload
            else:
                db.add(AdaptationAnalyticsModel(id=ANALYTICS_ROW_ID, analytics_json=payload))
            db.commit()

        self._run(upsert)
