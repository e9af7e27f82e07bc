from flask import Flask, jsonify
from flask_login import LoginManager
from models import db, User
from dotenv import load_dotenv
import logging
import os

load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name, default='false'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(test_config=None):
    """Application factory; *test_config* overrides the environment."""
    app = Flask(__name__, static_folder=None)

    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///facturx.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['FACTURX_PROFILE'] = os.getenv('FACTURX_PROFILE', 'EN16931')
    app.config['FACTURX_CHECK_XSD'] = _env_flag('FACTURX_CHECK_XSD')
    app.config['FACTURX_LANG'] = os.getenv('FACTURX_LANG', 'fr-FR')
    app.config['FACTURX_PRODUCER'] = os.getenv('FACTURX_PRODUCER', 'Factur-X Service')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    # French error messages stay readable in the JSON bodies
    app.json.ensure_ascii = False

    db.init_app(app)

    # Flask-Login setup: API only, so no login view to redirect to
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Non authentifié'}), 401

    # Register blueprints
    from blueprints.auth import auth_bp
    from blueprints.invoices import invoices_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(invoices_bp, url_prefix='/api/invoices')

    # Initialize database and create default user
    with app.app_context():
        db.create_all()

        if not app.config.get('TESTING') and User.query.count() == 0:
            username = os.getenv('ADMIN_USERNAME', 'admin')
            user = User(username=username, email=os.getenv('ADMIN_EMAIL'))
            user.set_password(os.getenv('ADMIN_PASSWORD', 'password123'))
            db.session.add(user)
            db.session.commit()
            logger.info("Created default user: %s", username)

    return app


if __name__ == '__main__':
    create_app().run(port=5000, debug=False)
