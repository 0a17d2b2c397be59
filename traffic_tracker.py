import re

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageError, ValidationError
from models import (
    db, PageView, DailyStat, PopularPage, DEVICE_TYPES, MAX_COUNTRY_LENGTH, MAX_TEXT_LENGTH, utcnow
)

TABLET_PATTERN = re.compile(r'(tablet|ipad|playbook|silk)|(android(?!.*mobi))', re.IGNORECASE)
MOBILE_PATTERN = re.compile(r'mobile|iphone|ipod|blackberry|opera mini|iemobile|wpdesktop', re.IGNORECASE)

UPSERT_DIALECTS = {
    'sqlite': sqlite.insert,
    'postgresql': postgresql.insert,
}


def detect_device_type(user_agent):
    """Classify a user agent string as Tablet, Mobile, Desktop or Unknown"""
    if not user_agent:
        return 'Unknown'
    if TABLET_PATTERN.search(user_agent):
        return 'Tablet'
    if MOBILE_PATTERN.search(user_agent):
        return 'Mobile'
    return 'Desktop'


class TrafficTracker:
    """
    Write path for page views.

    Every recorded view inserts one raw ``page_views`` row and bumps the
    ``popular_pages`` and ``visitor_stats`` counters inside the same
    transaction, so the aggregates never drift from the raw rows.
    """

    extension_name = 'traffic_tracker'

    def __init__(self, app=None, clock=None):
        self.app = app
        self.clock = clock or utcnow
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions[self.extension_name] = self

    def record_event(self, page_path, page_title=None, user_agent='', referrer=None,
                     device_type=None, country=None):
        """
        Store one page view and bump its counters, all in one transaction.

        ``page_path``, ``page_title`` and ``referrer`` are limited to
        ``MAX_TEXT_LENGTH`` characters and ``country`` to
        ``MAX_COUNTRY_LENGTH``; longer values raise ``ValidationError``.
        """
        if page_path is None or not str(page_path).strip():
            raise ValidationError('pagePath is required')

        check_length('pagePath', page_path, MAX_TEXT_LENGTH)
        check_length('pageTitle', page_title, MAX_TEXT_LENGTH)
        check_length('referrer', referrer, MAX_TEXT_LENGTH)
        check_length('country', country, MAX_COUNTRY_LENGTH)

        if device_type is None:
            device_type = detect_device_type(user_agent)
        elif device_type not in DEVICE_TYPES:
            raise ValidationError(f'Invalid device type: {device_type}')

        viewed_at = self.clock()

        try:
            page_view = PageView(
                page_path=page_path,
                page_title=page_title,
                timestamp=viewed_at,
                user_agent=user_agent or '',
                referrer=referrer,
                device_type=device_type,
                country=country or 'Unknown',
            )
            db.session.add(page_view)
            db.session.flush()
            event_id = page_view.id

            self.upsert_popular_page(page_path, page_title, viewed_at)
            self.upsert_daily_stat(viewed_at.date())

            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError(f'Could not record page view: {e}') from e
        except Exception:
            db.session.rollback()
            raise

        return event_id

    def dialect_name(self):
        return db.session.get_bind().dialect.name

    def upsert_popular_page(self, page_path, page_title, viewed_at):
        db.session.execute(
            self.popular_page_upsert(self.dialect_name(), page_path, page_title, viewed_at)
        )

    def upsert_daily_stat(self, day):
        db.session.execute(self.daily_stat_upsert(self.dialect_name(), day))

    def popular_page_upsert(self, dialect, page_path, page_title, viewed_at):
        table = PopularPage.__table__
        stmt = upsert_insert(dialect, table).values(
            page_path=page_path,
            page_title=page_title,
            view_count=1,
            last_viewed=viewed_at,
        )
        return stmt.on_conflict_do_update(
            index_elements=['page_path'],
            set_={
                'view_count': table.c.view_count + 1,
                'page_title': stmt.excluded.page_title,
                'last_viewed': stmt.excluded.last_viewed,
            },
        )

    def daily_stat_upsert(self, dialect, day):
        table = DailyStat.__table__
        stmt = upsert_insert(dialect, table).values(date=day, total_visits=1, unique_pages=1)
        return stmt.on_conflict_do_update(
            index_elements=['date'],
            set_={'total_visits': table.c.total_visits + 1},
        )


def upsert_insert(dialect, table):
    insert = UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise StorageError(f'Atomic upsert is not supported on {dialect}')
    return insert(table)


def check_length(field, value, limit):
    if value is not None and len(str(value)) > limit:
        raise ValidationError(f'{field} is longer than {limit} characters')
