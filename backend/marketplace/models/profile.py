from datetime import datetime

from marketplace.extensions import db


class ProfileRole:
    USER = "user"
    ADMIN = "admin"
    BANNED = "banned"

    ALL = (USER, ADMIN, BANNED)


class Profile(db.Model):
    __tablename__ = "profiles"
    __table_args__ = (
        db.CheckConstraint("role IN ('user', 'admin', 'banned')", name="ck_profiles_role"),
    )

    # Identity-provider subject; profiles are keyed on it, not generated locally.
    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=False, default="")
    role = db.Column(db.String(16), nullable=False, default=ProfileRole.USER, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return (self.role or "") == ProfileRole.ADMIN

    @property
    def is_banned(self) -> bool:
        return (self.role or "") == ProfileRole.BANNED
