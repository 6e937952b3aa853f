from sqlalchemy import Column, Integer, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from database import Base, utcnow

DELETED_PLACEHOLDER = "[This comment has been deleted]"


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (
        Index("ix_comments_post_parent_created", "post_id", "parent_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True, index=True)
    # Kept as written; soft deletion only changes what `body` exposes
    content = Column(Text, nullable=False)
    likes_count = Column(Integer, nullable=False, default=0)
    replies_count = Column(Integer, nullable=False, default=0)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    author = relationship("User", lazy="joined")

    @property
    def body(self) -> str:
        return DELETED_PLACEHOLDER if self.is_deleted else self.content

    @property
    def owner_id(self):
        return self.author_id

    def edit(self, content: str):
        self.content = content
        self.is_edited = True
        self.edited_at = utcnow()

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = utcnow()
