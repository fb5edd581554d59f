# shadowsettle/models/__init__.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def init_app(app):
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    db.init_app(app)
    migrate.init_app(app, db)


def store_enabled(app) -> bool:
    """True when a real backing store (DATABASE_URL) is configured."""
    return bool(app.config.get("STORE_ENABLED"))


# register models
from .job import SettlementJob  # noqa
from .treasury import TreasuryBalance  # noqa

__all__ = ["db", "migrate", "store_enabled", "SettlementJob", "TreasuryBalance"]
