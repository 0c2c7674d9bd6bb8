from flask import jsonify
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


@login_manager.unauthorized_handler
def _unauth():
    # API clients get JSON instead of a redirect to a login page
    return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401
