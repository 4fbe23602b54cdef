# backend/backoffice/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.from_mapping(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.settings import settings_bp
    from .routes.catalog import catalog_bp
    from .routes.inventory import inventory_bp
    from .routes.transfers import transfers_bp
    from .routes.registers import registers_bp
    from .routes.payment_methods import payment_methods_bp
    from .routes.sales import sales_bp
    from .routes.customer_payments import customer_payments_bp
    from .routes.purchases import purchases_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.supplier_payments import supplier_payments_bp
    from .routes.treasury import treasury_bp
    from .routes.ecommerce import ecommerce_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(payment_methods_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(customer_payments_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(supplier_payments_bp)
    app.register_blueprint(treasury_bp)
    app.register_blueprint(ecommerce_bp)
    app.register_blueprint(reports_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
