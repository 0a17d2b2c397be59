from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

DEVICE_TYPES = ('Mobile', 'Tablet', 'Desktop', 'Unknown')

MAX_TEXT_LENGTH = 500
MAX_COUNTRY_LENGTH = 16


def utcnow():
    """Naive UTC now, the format every timestamp column is stored in"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PageView(db.Model):
    __tablename__ = 'page_views'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    page_path = db.Column(db.String(MAX_TEXT_LENGTH), nullable=False, index=True)
    page_title = db.Column(db.String(MAX_TEXT_LENGTH))
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)
    user_agent = db.Column(db.Text)
    referrer = db.Column(db.String(MAX_TEXT_LENGTH))
    device_type = db.Column(db.String(10), index=True)
    country = db.Column(db.String(MAX_COUNTRY_LENGTH), index=True)


class DailyStat(db.Model):
    __tablename__ = 'visitor_stats'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    date = db.Column(db.Date, nullable=False, unique=True, index=True)
    total_visits = db.Column(db.Integer, default=0)
    # Written once when the day's row is created and never recomputed.
    unique_pages = db.Column(db.Integer, default=0)


class PopularPage(db.Model):
    __tablename__ = 'popular_pages'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    page_path = db.Column(db.String(MAX_TEXT_LENGTH), nullable=False, unique=True)
    page_title = db.Column(db.String(MAX_TEXT_LENGTH))
    view_count = db.Column(db.Integer, default=0)
    last_viewed = db.Column(db.DateTime, default=utcnow)
