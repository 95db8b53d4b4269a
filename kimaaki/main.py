import os
import re
import logging
from datetime import datetime

from flask import Flask, jsonify, request, make_response
from flask_cors import CORS

from .utils.helpers import create_supabase_client, json_error
from .utils.realtime import socketio

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# ---------------- CORS ----------------
PROD_ORIGINS = [
    "https://kimaaki.com",
    "https://app.kimaaki.com",
    "https://admin.kimaaki.com",
    "https://empresas.kimaaki.com",
    "https://entregadores.kimaaki.com",
]

# Pré-visualizações Vercel (domínios variáveis)
VERCEL_BASE = ".vercel.app"

LOCAL_HOSTS = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:5173", "http://127.0.0.1:5173",
]


def is_allowed_origin(origin: str, extra=()) -> bool:
    if not origin:
        return False
    if origin in PROD_ORIGINS or origin in LOCAL_HOSTS or origin in extra:
        return True
    if origin.endswith(VERCEL_BASE):
        return True
    # qualquer localhost em porta qualquer
    if re.match(r"^http://localhost:\d+$", origin) or re.match(r"^http://127\.0\.0\.1:\d+$", origin):
        return True
    return False


def _register_blueprints(app):
    from .routes.admin import admin_bp
    from .routes.auth import auth_bp
    from .routes.commissions import commissions_bp
    from .routes.coupons import coupons_bp
    from .routes.notifications import notifications_bp
    from .routes.orders import orders_bp
    from .routes.ratings import ratings_bp
    from .routes.registration import registration_bp
    from .routes.scheduling import scheduling_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(registration_bp, url_prefix='/api/register')
    app.register_blueprint(orders_bp, url_prefix='/api/orders')
    app.register_blueprint(coupons_bp, url_prefix='/api/coupons')
    app.register_blueprint(scheduling_bp, url_prefix='/api/scheduling')
    app.register_blueprint(commissions_bp, url_prefix='/api/commissions')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(ratings_bp, url_prefix='/api/ratings')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')


def create_app(test_config=None, supabase_client=None, db_factory=None):
    """
    Monta o app. O cliente Supabase e a fábrica de conexões Postgres ficam em
    app.extensions; os testes passam versões falsas por parâmetro.
    """
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.py')
    app.config.from_pyfile(config_path)
    app.config.update(
        SESSION_COOKIE_SAMESITE="None",
        SESSION_COOKIE_SECURE=True,
    )
    if test_config:
        app.config.update(test_config)

    if supabase_client is None and not app.config.get("TESTING"):
        supabase_client = create_supabase_client(app.config.get("SUPABASE_URL"), app.config.get("SUPABASE_SERVICE_KEY"))
    app.extensions["supabase"] = supabase_client
    app.extensions["db_factory"] = db_factory

    extra_origins = set(app.config.get("EXTRA_ALLOWED_ORIGINS") or [])

    CORS(
        app,
        resources={r"/api/*": {"origins": "*"}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    @app.before_request
    def handle_preflight():
        if request.method == "OPTIONS":
            origin = request.headers.get("Origin", "")
            resp = make_response()
            resp.headers["Access-Control-Allow-Origin"] = origin if is_allowed_origin(origin, extra_origins) else "null"
            resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Credentials"] = "true"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            return resp, 204

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin", "")
        if is_allowed_origin(origin, extra_origins):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers.setdefault("Access-Control-Allow-Credentials", "true")
            response.headers.setdefault("Access-Control-Allow-Headers", "Content-Type, Authorization")
            response.headers.setdefault("Access-Control-Allow-Methods", "GET, POST, PUT, PATCH, DELETE, OPTIONS")
        return response

    socketio.init_app(
        app,
        cors_allowed_origins="*",
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE", "eventlet"),
        logger=False,
        engineio_logger=False,
    )

    _register_blueprints(app)

    # --- Status ---
    @app.route('/')
    def index():
        return jsonify({"status": "online", "message": "Servidor Kimaaki funcionando!"})

    @app.route('/health')
    def health_check_simple():
        return jsonify({
            "status": "ok",
            "message": "Server is running",
            "timestamp": datetime.now().isoformat(),
            "service": "Kimaaki Delivery API"
        }), 200

    @app.route('/api/health')
    def health_check():
        return jsonify({
            "status": "healthy",
            "database": "connected" if app.extensions.get("supabase") is not None else "disconnected",
            "direct_db": "configured" if (db_factory or app.config.get("DATABASE_URL")) else "not_configured",
            "cors_enabled": True
        })

    # --- Handlers de Erro ---
    @app.errorhandler(404)
    def not_found(error):
        return json_error("Endpoint não encontrado", 404, path=request.path)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return json_error("Método não permitido", 405, method=request.method)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Erro interno: {error}", exc_info=True)
        return json_error("Erro interno do servidor", 500)

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    logger.info(f"Iniciando servidor na porta {port} (debug: {debug})")
    socketio.run(app, host='0.0.0.0', port=port, debug=debug, use_reloader=debug)
