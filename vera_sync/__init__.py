from flask import Flask
from flasgger import Swagger
from prometheus_flask_exporter import PrometheusMetrics
from flask_cors import CORS
import os

from .logging_setup import setup_logging
from .routes import health, sync_routes
from .config import DevelopmentConfig, ProductionConfig, TestingConfig

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

    # 👇 CORS desde variable de entorno CORS_ORIGINS
    # - CORS_ORIGINS no seteada o '*'  -> permite todos los orígenes
    # - CORS_ORIGINS="https://a.example.com,https://b.example.com" -> sólo esos
    cors_origin = os.getenv("CORS_ORIGINS", "*").strip()
    cors_common_kwargs = dict(
        supports_credentials=False,
        methods=["GET", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"],
    )
    if cors_origin == "*" or cors_origin == "":
        CORS(app, resources={r"/*": {"origins": "*"}}, **cors_common_kwargs)
    else:
        origins_list = [o.strip() for o in cors_origin.split(",") if o.strip()]
        CORS(app, resources={r"/*": {"origins": origins_list}}, **cors_common_kwargs)

    # 👇 Importar models aquí (ya con app creada)
    from .models import init_app as init_models
    init_models(app)

    # Swagger
    swagger_template = {
        "swagger": "2.0",
        "info": {
            "title": "VerA sync",
            "description": "Sourcify <-> Verifier Alliance synchronization: health and sync state",
            "version": __version__,
        },
        "basePath": "/",
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
    app.register_blueprint(health.bp)
    app.register_blueprint(sync_routes.bp, url_prefix="/api/sync")

    # CLI: flask sync replicate|push|listen|checkpoint
    from .cli import sync_cli
    app.cli.add_command(sync_cli)

    # Métricas
    if app.config.get("METRICS_ENABLED", True):
        metrics = PrometheusMetrics(app, path="/metrics")
        metrics.info("app_info", "VerA sync service", version=__version__)

    return app
