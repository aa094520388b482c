from flask import Flask, request, jsonify, g
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db
from extensions import jwt, bcrypt, limiter, mail
from sqlalchemy import text
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os
import time

# ============================================
# 初始化 Flask App
# ============================================

app = Flask(__name__)

config_class = get_config()
config_class.validate()
app.config.from_object(config_class)

# ============================================
# CORS 設定
# ============================================

# 前端用 cookie 帶 token,所以要 supports_credentials 並指定來源
CORS(app,
     supports_credentials=True,
     origins=app.config['CORS_ORIGINS'],
     methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
     allow_headers=['Content-Type', 'Authorization'])

# ============================================
# 擴展初始化
# ============================================

db.init_app(app)
jwt.init_app(app)
bcrypt.init_app(app)
mail.init_app(app)

app.extensions['bcrypt'] = bcrypt

# Rate Limiting: storage 由 RATELIMIT_STORAGE_URI 決定 (production 用 Redis)
limiter.init_app(app)

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 各模組的 logger 也會寫到同樣的檔案
    """
    log_dir = app.config['LOG_DIR']
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)

    app.logger.addHandler(info_handler)
    app.logger.addHandler(error_handler)
    app.logger.setLevel(level)

    # blueprint 模組用 logging.getLogger(__name__),掛在 root logger 上
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(level)

    app.logger.info('Application startup')

if not app.debug and not app.testing:
    setup_logging(app)

# ============================================
# 註冊 Blueprints
# ============================================

from auth import auth_bp
app.register_blueprint(auth_bp, url_prefix='/api/auth')

from projects import projects_bp
app.register_blueprint(projects_bp, url_prefix='/api/projects')

from tags import tags_bp
app.register_blueprint(tags_bp, url_prefix='/api/tags')

from comments import comments_bp
app.register_blueprint(comments_bp, url_prefix='/api/comments')

from users import users_bp
app.register_blueprint(users_bp, url_prefix='/api/users')

from teams import teams_bp
app.register_blueprint(teams_bp, url_prefix='/api/teams')

from awards import awards_bp
app.register_blueprint(awards_bp, url_prefix='/api/awards')

from semesters import semesters_bp
app.register_blueprint(semesters_bp, url_prefix='/api/semesters')

from categories import categories_bp
app.register_blueprint(categories_bp, url_prefix='/api/categories')

from files import files_bp
app.register_blueprint(files_bp, url_prefix='/api/files')

from registered_students import registered_students_bp
app.register_blueprint(registered_students_bp, url_prefix='/api/registered-students')

# ============================================
# 資料庫初始化
# ============================================

with app.app_context():
    db.create_all()
    app.logger.info('Database tables created')

# ============================================
# 錯誤回應格式
# ============================================

def error_response(code, message, status):
    """所有 app 層級錯誤都用同一種 JSON 格式"""
    return jsonify({'error': code, 'message': message, 'status': status}), status

# ============================================
# JWT 錯誤處理
# ============================================

@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    app.logger.warning(f"Expired token from {request.remote_addr} (user {jwt_payload.get('sub')})")
    return error_response('token_expired', 'Token expired. Please login again.', 401)

@jwt.invalid_token_loader
def invalid_token_callback(error):
    app.logger.warning(f"Invalid token from {request.remote_addr}: {error}")
    return error_response('invalid_token', 'Invalid token', 401)

@jwt.unauthorized_loader
def unauthorized_callback(error):
    """沒有 header 也沒有 token cookie"""
    app.logger.warning(f"Missing token from {request.remote_addr} on {request.path}: {error}")
    return error_response('authorization_required', 'Access denied. No token provided.', 401)

# ============================================
# 全域錯誤處理
# ============================================

@app.errorhandler(400)
def bad_request(error):
    return error_response('bad_request', 'Malformed request', 400)

@app.errorhandler(404)
def not_found(error):
    return error_response('not_found', f'No route for {request.path}', 404)

@app.errorhandler(405)
def method_not_allowed(error):
    return error_response('method_not_allowed', f'{request.method} is not supported here', 405)

@app.errorhandler(413)
def request_entity_too_large(error):
    """上傳檔案超過 MAX_CONTENT_LENGTH"""
    limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
    return error_response('file_too_large', f'Request body exceeds {limit_mb}MB', 413)

@app.errorhandler(429)
def rate_limit_exceeded(error):
    """評論的 limiter 有自己的訊息,放在 error.description"""
    app.logger.warning(f"Rate limit hit by {request.remote_addr} on {request.path}")
    message = getattr(error, 'description', None) or 'Too many requests, slow down'
    return error_response('rate_limit_exceeded', message, 429)

@app.errorhandler(500)
def internal_server_error(error):
    """完整 stack trace 只寫到 log,前端只拿到通用訊息"""
    db.session.rollback()
    app.logger.error(f"Internal server error on {request.path}: {str(error)}", exc_info=True)
    return error_response('internal_server_error', 'Internal server error', 500)

@app.errorhandler(Exception)
def handle_unexpected_error(error):
    """
    沒有被 route 接住的例外

    其他 HTTP 錯誤 (例如 415) 保留原本的 status code
    """
    if isinstance(error, HTTPException):
        return error_response(error.name.lower().replace(' ', '_'), error.description, error.code)

    db.session.rollback()
    app.logger.error(f"Unhandled {type(error).__name__} on {request.path}: {str(error)}", exc_info=True)
    return error_response('unexpected_error', 'Internal server error', 500)

# ============================================
# Request/Response Logging
# ============================================

@app.before_request
def log_request():
    """記錄每個請求"""
    g.request_started = time.perf_counter()
    if not app.debug:
        app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

@app.after_request
def log_response(response):
    """記錄每個回應和處理時間"""
    if not app.debug:
        started = g.get('request_started')
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0
        app.logger.info(
            f"Response: {response.status_code} for {request.method} {request.path} "
            f"({duration_ms:.1f}ms)"
        )

    # 加上 security headers
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-XSS-Protection'] = '1; mode=block'

    return response

# ============================================
# Health Check Endpoint
# ============================================

@app.route('/health', methods=['GET'])
def health_check():
    """
    健康檢查端點

    用於 load balancer 或監控系統檢查服務是否正常
    """
    try:
        db.session.execute(text('SELECT 1'))

        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.utcnow().isoformat()
        }), 200
    except Exception as e:
        app.logger.error(f"Health check failed: {str(e)}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': 'Database connection failed'
        }), 503

# ============================================
# API 首頁
# ============================================

@app.route('/')
@limiter.limit("10 per minute")
def home():
    return jsonify({
        'message': 'Capstone Showcase API',
        'version': app.config['API_VERSION'],
        'endpoints': {
            'health': '/health',
            'auth': '/api/auth',
            'projects': '/api/projects',
            'tags': '/api/tags',
            'comments': '/api/comments',
            'users': '/api/users',
            'teams': '/api/teams',
            'awards': '/api/awards',
            'semesters': '/api/semesters',
            'categories': '/api/categories',
            'files': '/api/files',
            'registered_students': '/api/registered-students'
        },
        'rate_limits': {
            'default': '200 per hour, 1000 per day',
            'comments': app.config['COMMENT_RATE_LIMIT']
        }
    })

# ============================================
# 開發環境專用的 Debug Route
# ============================================

if app.debug:
    @app.route('/debug/routes')
    def debug_routes():
        """列出所有註冊的路由 (僅開發環境)"""
        routes = []
        for rule in app.url_map.iter_rules():
            routes.append({
                'endpoint': rule.endpoint,
                'methods': list(rule.methods),
                'path': str(rule)
            })
        return jsonify({'routes': routes})

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 環境用 gunicorn
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 5050))

    app.run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
