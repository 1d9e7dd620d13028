from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from ..constants import IssueStatus, Priority
from ..database import Base
from .user import _new_id


class Issue(Base):
    """A single reported civic problem."""

    __tablename__ = "issues"

    id = Column(String(32), primary_key=True, default=_new_id)
    title = Column(String(100), nullable=False)
    description = Column(String(500))
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location = Column(String(255))
    category = Column(String(50))
    priority = Column(String(16), default=Priority.MEDIUM.value, nullable=False, index=True)
    status = Column(String(16), default=IssueStatus.NEW.value, nullable=False, index=True)
    user_id = Column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="issues")
    image_rows = relationship(
        "IssueImage",
        back_populates="issue",
        order_by="IssueImage.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def images(self) -> list[str]:
        return [row.url for row in self.image_rows]

    def set_images(self, urls: list[str]) -> None:
        self.image_rows = [
            IssueImage(url=url, position=position) for position, url in enumerate(urls)
        ]


class IssueImage(Base):
    """Opaque reference to a remotely stored photo of an issue."""

    __tablename__ = "issue_images"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(
        String(32), ForeignKey("issues.id", ondelete="CASCADE"), index=True, nullable=False
    )
    url = Column(String(1024), nullable=False)
    position = Column(Integer, default=0, nullable=False)

    issue = relationship("Issue", back_populates="image_rows")


Index("ix_issues_latitude_longitude", Issue.latitude, Issue.longitude)
