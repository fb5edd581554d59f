from flask import Flask
from flasgger import Swagger
from prometheus_flask_exporter import PrometheusMetrics
from flask_cors import CORS
import os

from .logging_setup import setup_logging
from .routes import settlement_routes, job_routes, dashboard_routes, health
from .config import DevelopmentConfig, ProductionConfig, TestingConfig, load_iexec_settings

__version__ = "1.0.0"


def create_app(config_name: str = "development"):
    app = Flask(__name__)

    config_map = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }
    app.config.from_object(config_map.get(config_name.lower(), DevelopmentConfig))

    setup_logging(app)

    # falla al arrancar si faltan credenciales de cómputo (no en testing)
    if app.config.get("REQUIRE_IEXEC_CONFIG"):
        load_iexec_settings(app.config)

    # CORS desde CORS_ORIGINS: '*' o lista separada por comas
    cors_origin = os.getenv("CORS_ORIGINS", "*").strip()
    cors_common_kwargs = dict(
        supports_credentials=False,
        methods=["GET", "POST", "PATCH", "OPTIONS", "HEAD"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-Request-ID",
            "Accept",
            "Origin",
        ],
    )
    if cors_origin == "*" or cors_origin == "":
        CORS(app, resources={r"/*": {"origins": "*"}}, **cors_common_kwargs)
    else:
        origins_list = [o.strip() for o in cors_origin.split(",") if o.strip()]
        CORS(app, resources={r"/*": {"origins": origins_list}}, **cors_common_kwargs)

    from .models import db, init_app as init_models, store_enabled
    init_models(app)
    if store_enabled(app) and app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    # Swagger
    swagger_template = {
        "swagger": "2.0",
        "info": {
            "title": "ShadowSettle API",
            "description": "Liquidación confidencial: tareas TEE, registro de jobs y settlement on-chain.",
            "version": __version__,
        },
        "basePath": "/",
        "schemes": ["https", "http"],
    }
    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": "apispec_1",
                "route": "/apispec_1.json",
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/apidocs/",
    }
    Swagger(app, template=swagger_template, config=swagger_config)

    # Blueprints
    app.register_blueprint(settlement_routes.bp, url_prefix="/settlement")
    app.register_blueprint(job_routes.bp, url_prefix="/jobs")
    app.register_blueprint(dashboard_routes.bp, url_prefix="/dashboard")
    app.register_blueprint(health.bp)

    # Métricas
    metrics = PrometheusMetrics(app, path="/metrics")
    metrics.info("app_info", "ShadowSettle service", version=__version__)

    from .tasks.celery_app import init_celery
    init_celery(app)

    return app
