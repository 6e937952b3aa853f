from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from database import Base, utcnow


class Post(Base):
    __tablename__ = "posts"
    __table_args__ = (
        Index("ix_posts_published_created", "published", "created_at"),
        Index("ix_posts_author_published_created", "author_id", "published", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False, index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    excerpt = Column(String(500), nullable=False, default="")
    content_delta = Column(JSON, nullable=False)
    content_html = Column(Text, nullable=False, default="")
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    cover_image = Column(String, nullable=True)
    category = Column(String(50), nullable=True, index=True)
    likes_count = Column(Integer, nullable=False, default=0)
    comments_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    read_time = Column(Integer, nullable=False, default=1)
    published = Column(Boolean, nullable=False, default=True, index=True)
    featured = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    author = relationship("User", lazy="joined")
    tag_links = relationship(
        "PostTag",
        back_populates="post",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PostTag.id",
    )

    @property
    def tags(self):
        return [link.name for link in self.tag_links]

    @property
    def owner_id(self):
        return self.author_id


class PostTag(Base):
    __tablename__ = "post_tags"

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(30), nullable=False, index=True)

    post = relationship("Post", back_populates="tag_links")
