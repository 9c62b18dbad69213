"""
models.py

SQLAlchemy models for the relational source the recommendation items read from:
User, Activity, Category and the association tables linking them.
"""
import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


# Activities completed by a user
user_activities = Table(
    "user_activities",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("activity_id", Integer, ForeignKey("activities.id"), primary_key=True),
)

activity_categories = Table(
    "activity_categories",
    Base.metadata,
    Column("activity_id", Integer, ForeignKey("activities.id"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    activities = relationship("Activity", secondary=user_activities, back_populates="users", order_by="Activity.id")


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class Activity(Base):
    __tablename__ = "activities"
    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    is_published = Column(Boolean, default=True, index=True)
    priority = Column(Integer, default=0)
    # 0 = none, 1 = days/hours restriction, 2 = date range
    time_restriction = Column(Integer, default=0)
    # {"days": {"1": true, ...}, "start_time": "09:00", "end_time": "17:00"} with 1 = monday
    time_restriction_data = Column(JSON, nullable=True)
    date_begin = Column(DateTime, nullable=True)
    date_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    users = relationship("User", secondary=user_activities, back_populates="activities", order_by="User.id")
    categories = relationship("Category", secondary=activity_categories, order_by="Category.id")
