from flask import Flask, Blueprint, jsonify, request, current_app
from dotenv import load_dotenv
import os
from datetime import datetime, timezone

from errors import ValidationError
from forms import TrackForm
from models import db, MAX_COUNTRY_LENGTH
from traffic_tracker import TrafficTracker
from traffic_stats import TrafficStats

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

api = Blueprint('api', __name__, url_prefix='/api')


def create_app(config=None, clock=None):
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-key-change-in-production')

    # SQLite file next to the app unless a full database URL is given
    db_path = os.getenv('DB_PATH', os.path.join(basedir, 'data', 'statistics.db'))
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', f'sqlite:///{db_path}')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['PORT'] = int(os.getenv('PORT', 8062))
    app.config['CORS_ALLOW_ORIGINS'] = [
        origin.strip() for origin in os.getenv('CORS_ALLOW_ORIGINS', '').split(',') if origin.strip()
    ]
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite'):
        # Concurrent writers wait for the file lock instead of failing
        app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {'connect_args': {'timeout': 30}})
        if database_uri.startswith('sqlite:///'):
            db_dir = os.path.dirname(database_uri[len('sqlite:///'):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    TrafficTracker(app, clock=clock)
    TrafficStats(app, clock=clock)

    app.register_blueprint(api)
    app.after_request(add_cors_headers)

    # Create database tables on startup
    with app.app_context():
        db.create_all()

    return app


def dispose_store(app):
    """Release every pooled database connection held by the app"""
    with app.app_context():
        db.engine.dispose()


def get_tracker():
    return current_app.extensions[TrafficTracker.extension_name]


def get_stats():
    return current_app.extensions[TrafficStats.extension_name]


def pick_cors_origin(request_origin):
    """Return the origin if it is on the allowlist"""
    if not request_origin:
        return None
    if request_origin in current_app.config['CORS_ALLOW_ORIGINS']:
        return request_origin
    return None


def add_cors_headers(response):
    origin = pick_cors_origin(request.headers.get('Origin'))

    if origin:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Vary'] = 'Origin'
        response.headers['Access-Control-Allow-Credentials'] = 'true'
        response.headers['Access-Control-Allow-Methods'] = request.headers.get(
            'Access-Control-Request-Method', 'GET,POST,OPTIONS')
        response.headers['Access-Control-Allow-Headers'] = request.headers.get(
            'Access-Control-Request-Headers', 'Content-Type')
    return response


def parse_limit(default):
    try:
        limit = int(request.args.get('limit', default))
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


def get_country():
    country = (request.headers.get('cf-ipcountry') or '').strip()
    return country[:MAX_COUNTRY_LENGTH] or 'Unknown'


def optional_text(value):
    """Form value as a string, or None when the client left it out"""
    if value is None or value == '':
        return None
    return str(value)


@api.route('/track', methods=['POST'])
def track():
    try:
        form = TrackForm()
        if not form.validate():
            raise ValidationError(form.first_error())

        get_tracker().record_event(
            page_path=str(form.pagePath.data),
            page_title=optional_text(form.pageTitle.data),
            user_agent=request.headers.get('User-Agent', ''),
            referrer=optional_text(form.referrer.data),
            country=get_country()
        )
        return jsonify({'success': True, 'message': 'Page view tracked'})
    except ValidationError as e:
        current_app.logger.warning(f'Rejected page view: {e}')
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        current_app.logger.exception('Error tracking page view')
        return jsonify({'success': False, 'error': str(e)}), 500


@api.route('/stats/overview')
def stats_overview():
    try:
        return jsonify(get_stats().get_total_stats())
    except Exception as e:
        current_app.logger.exception('Error getting overview stats')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/daily')
def stats_daily():
    try:
        return jsonify(get_stats().get_daily_views())
    except Exception as e:
        current_app.logger.exception('Error getting daily stats')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/hourly')
def stats_hourly():
    try:
        return jsonify(get_stats().get_hourly_views())
    except Exception as e:
        current_app.logger.exception('Error getting hourly stats')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/popular')
def stats_popular():
    try:
        return jsonify(get_stats().get_popular_pages(parse_limit(10)))
    except Exception as e:
        current_app.logger.exception('Error getting popular pages')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/recent')
def stats_recent():
    try:
        return jsonify(get_stats().get_recent_views(parse_limit(20)))
    except Exception as e:
        current_app.logger.exception('Error getting recent views')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/device')
def stats_device():
    try:
        return jsonify(get_stats().get_views_by_device())
    except Exception as e:
        current_app.logger.exception('Error getting device stats')
        return jsonify({'error': str(e)}), 500


@api.route('/stats/country')
def stats_country():
    try:
        return jsonify(get_stats().get_views_by_country())
    except Exception as e:
        current_app.logger.exception('Error getting country stats')
        return jsonify({'error': str(e)}), 500


@api.route('/health')
def health_check():
    return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})


if __name__ == '__main__':
    app = create_app()
    app.logger.info(f"Statistics API server listening on port {app.config['PORT']}")
    try:
        app.run(host='0.0.0.0', port=app.config['PORT'])
    finally:
        dispose_store(app)
