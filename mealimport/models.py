from datetime import datetime

from mealimport import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    pro_override = db.Column(db.Boolean, nullable=False, default=False)
    pro_expires_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    ai_usage = db.relationship("AiUsage", backref="user", lazy=True)


class AiUsage(db.Model):
    __tablename__ = "ai_usage"
    __table_args__ = (db.UniqueConstraint("user_id", "feature", "period", name="uq_ai_usage_user_feature_period"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    feature = db.Column(db.String(40), nullable=False)
    period = db.Column(db.String(7), nullable=False)  # YYYY-MM
    used = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
