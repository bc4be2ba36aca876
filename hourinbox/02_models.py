"""
HourInbox - Datenbankmodelle (SQLAlchemy)
Organisationen (IMAP/SMTP-Profile), Benutzer-Einstellungen, Signaturen
"""

from datetime import datetime, UTC
from enum import Enum
import uuid

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class TLSMode(str, Enum):
    """Verbindungsmodus für IMAP und SMTP"""

    TLS = "tls"
    STARTTLS = "starttls"
    NONE = "none"


class Organization(Base):
    """Verbindungsprofil einer Organisation, gefunden über die Mail-Domain"""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    domain = Column(String(255), unique=True, nullable=False, index=True)
    imap_host = Column(String(255), nullable=False)
    imap_port = Column(Integer, nullable=False, default=993)
    smtp_host = Column(String(255), nullable=False)
    smtp_port = Column(Integer, nullable=False, default=465)
    tls_mode = Column(String(20), nullable=False, default=TLSMode.TLS.value)
    reject_unauthorized = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "imapHost": self.imap_host,
            "imapPort": self.imap_port,
            "smtpHost": self.smtp_host,
            "smtpPort": self.smtp_port,
            "tlsMode": self.tls_mode,
            "rejectUnauthorized": self.reject_unauthorized,
        }

    def __repr__(self):
        return f"<Organization {self.domain}>"


class UserSettings(Base):
    """Client-Einstellungen pro Mail-Adresse"""

    __tablename__ = "user_settings"
    __table_args__ = (
        CheckConstraint("poll_interval >= 15 AND poll_interval <= 600", name="ck_poll_interval"),
    )

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    push_notifications = Column(Boolean, nullable=False, default=True)
    new_email_sound = Column(Boolean, nullable=False, default=True)
    send_email_sound = Column(Boolean, nullable=False, default=True)
    poll_interval = Column(Integer, nullable=False, default=30)  # Sekunden
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    signatures = relationship(
        "Signature",
        back_populates="settings",
        cascade="all, delete-orphan",
        order_by="Signature.created_at",
    )

    def to_dict(self) -> dict:
        return {
            "pushNotifications": self.push_notifications,
            "newEmailSound": self.new_email_sound,
            "sendEmailSound": self.send_email_sound,
            "pollInterval": self.poll_interval,
        }


class Signature(Base):
    __tablename__ = "signatures"

    id = Column(Integer, primary_key=True)
    user_settings_id = Column(
        Integer, ForeignKey("user_settings.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(100), nullable=False)
    body = Column(Text, nullable=False, default="")
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))

    settings = relationship("UserSettings", back_populates="signatures")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "body": self.body,
            "isDefault": self.is_default,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
