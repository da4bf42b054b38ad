from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from database import Base

# JSONB sur Postgres, JSON générique ailleurs (SQLite en local / tests)
JsonColumn = JSON().with_variant(JSONB, "postgresql")


class UserProfileModel(Base):
    __tablename__ = "user_profiles"

    user_id = Column(String, primary_key=True)
    profile_json = Column(JsonColumn, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)


class AdaptationRecordModel(Base):
    __tablename__ = "adaptation_records"

    id = Column(String, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    recommendation_type = Column(String, nullable=False)
    record_json = Column(JsonColumn, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)


class RuleWeightModel(Base):
    __tablename__ = "rule_weights"

    recommendation_type = Column(String, primary_key=True)
    state_json = Column(JsonColumn, nullable=False)

    # contrôle de concurrence optimiste
    version = Column(Integer, default=1, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)


class RuleSetVersionModel(Base):
    __tablename__ = "rule_set_versions"

    version_id = Column(String, primary_key=True)
    version_json = Column(JsonColumn, nullable=False)
    retired_at = Column(DateTime, nullable=True)


class RuleSetAssignmentModel(Base):
    __tablename__ = "rule_set_assignments"

    user_id = Column(String, primary_key=True)
    version_id = Column(String, nullable=False)


class AdaptationAnalyticsModel(Base):
    __tablename__ = "adaptation_analytics"

    id = Column(Integer, primary_key=True)
    analytics_json = Column(JsonColumn, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), nullable=False)
