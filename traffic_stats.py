from datetime import datetime, time, timedelta

from sqlalchemy import func, desc, extract

from models import db, PageView, PopularPage, utcnow

DAILY_WINDOW_DAYS = 30
COUNTRY_LIMIT = 10


class TrafficStats:
    """Read-only statistics over recorded page views"""

    extension_name = 'traffic_stats'

    def __init__(self, app=None, clock=None):
        self.app = app
        self.clock = clock or utcnow
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions[self.extension_name] = self

    def today(self):
        return self.clock().date()

    @staticmethod
    def day_bounds(day):
        start = datetime.combine(day, time.min)
        return start, start + timedelta(days=1)

    def count_views_on(self, day):
        start, end = self.day_bounds(day)
        return PageView.query.filter(
            PageView.timestamp >= start,
            PageView.timestamp < end
        ).count()

    def get_total_stats(self):
        today = self.today()

        total_views = db.session.query(func.count(PageView.id)).scalar()
        unique_pages = db.session.query(
            func.count(func.distinct(PageView.page_path))
        ).scalar()

        return {
            'total_views': total_views or 0,
            'unique_pages': unique_pages or 0,
            'today_views': self.count_views_on(today),
            'yesterday_views': self.count_views_on(today - timedelta(days=1)),
        }

    def get_daily_views(self):
        today = self.today()
        start, _ = self.day_bounds(today - timedelta(days=DAILY_WINDOW_DAYS))
        _, end = self.day_bounds(today)

        day = func.date(PageView.timestamp).label('date')
        daily_views_raw = db.session.query(
            day,
            func.count(PageView.id).label('views')
        ).filter(
            PageView.timestamp >= start,
            PageView.timestamp < end
        ).group_by(day).order_by(day).all()

        daily_views = []
        for row in daily_views_raw:
            # SQLite returns DATE() as a string, other backends as a date
            if isinstance(row.date, str):
                date_str = row.date
            else:
                date_str = row.date.isoformat()
            daily_views.append({'date': date_str, 'views': row.views})
        return daily_views

    def get_hourly_views(self):
        start, end = self.day_bounds(self.today())

        hour = extract('hour', PageView.timestamp).label('hour')
        hourly_views_raw = db.session.query(
            hour,
            func.count(PageView.id).label('views')
        ).filter(
            PageView.timestamp >= start,
            PageView.timestamp < end
        ).group_by(hour).order_by(hour).all()

        return [
            {'hour': f'{int(row.hour):02d}:00', 'views': row.views}
            for row in hourly_views_raw
        ]

    def get_popular_pages(self, limit=10):
        pages = PopularPage.query.order_by(
            desc(PopularPage.view_count),
            PopularPage.id
        ).limit(limit).all()

        return [{
            'page_path': page.page_path,
            'page_title': page.page_title,
            'view_count': page.view_count
        } for page in pages]

    def get_recent_views(self, limit=20):
        views = PageView.query.order_by(
            desc(PageView.timestamp),
            desc(PageView.id)
        ).limit(limit).all()

        return [{
            'page_path': view.page_path,
            'page_title': view.page_title,
            'timestamp': view.timestamp.isoformat()
        } for view in views]

    def get_views_by_device(self):
        return self._breakdown(PageView.device_type, 'device')

    def get_views_by_country(self):
        return self._breakdown(PageView.country, 'country')[:COUNTRY_LIMIT]

    def _breakdown(self, column, key):
        """
        Views per distinct value of ``column`` with their share of all views.

        The total is summed from the grouped rows of the same query, so the
        views always add up to it even while writes are in flight.
        """
        value = func.coalesce(column, 'Unknown').label('value')
        rows = db.session.query(
            value,
            func.count(PageView.id).label('views')
        ).group_by(value).order_by(desc('views'), value).all()

        total_views = sum(row.views for row in rows)

        return [{
            key: row.value,
            'views': row.views,
            'percentage': percentage(row.views, total_views)
        } for row in rows]


def percentage(views, total_views):
    """Share of ``total_views`` rounded to two decimals, 0.0 when there are no views"""
    if not total_views:
        return 0.0
    return round(views * 100.0 / total_views, 2)
