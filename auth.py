from flask import Blueprint, request, jsonify, current_app, url_for
from flask_jwt_extended import (
    create_access_token, jwt_required, get_jwt_identity, get_jwt,
    verify_jwt_in_request, set_access_cookies, unset_jwt_cookies
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from marshmallow import Schema, fields, validate, ValidationError
from models import db, User, Team, RegisteredStudent, RegistrationToken, PasswordResetToken
from mailer import send_registration_magic_link, send_password_reset_link
from datetime import datetime, timedelta
from urllib.parse import urlencode
from functools import wraps
import hashlib
import secrets
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=30, error='Name must be 1-30 characters'),
        error_messages={'required': 'Name is required'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters'),
        error_messages={'required': 'Password is required'}
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=validate.Length(min=6))

class RequestResetSchema(Schema):
    email = fields.Email(required=True)

class ResetPasswordSchema(Schema):
    """重設密碼驗證"""
    email = fields.Email(required=True)
    token = fields.Str(required=True, validate=validate.Length(min=1))
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters')
    )

# ============================================
# Helper Functions
# ============================================

def get_bcrypt():
    """從 Flask app extensions 取得 bcrypt 實例 (不用 global variable)"""
    return current_app.extensions.get('bcrypt')

def validate_request_data(schema_class, data, **schema_kwargs):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class(**schema_kwargs)
    try:
        validated_data = schema.load(data)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages

def hash_password(password):
    return get_bcrypt().generate_password_hash(password).decode('utf-8')

def hash_token(raw_token):
    """magic link / 重設密碼 token 只存 hash"""
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()

def generate_token(user):
    """
    產生 JWT

    identity 是 user id,另外把 email 和 role 放在 claims 裡給角色檢查用
    """
    return create_access_token(
        identity=str(user.id),
        additional_claims={'email': user.email, 'role': user.role}
    )

def serialize_auth_user(user):
    return {
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'name': user.name
    }

def auth_response(user, message, status):
    """回傳 token + user,並把 token 寫進 HttpOnly cookie"""
    token = generate_token(user)
    response = jsonify({
        'message': message,
        'token': token,
        'user': serialize_auth_user(user)
    })
    set_access_cookies(response, token)
    return response, status

def check_capstone_student(email):
    """
    檢查 email 是否屬於已登記的 capstone 學生

    只有學校網域的 email 才會用 UPI (email 的 local part) 查名單
    """
    upi, _, domain = email.lower().partition('@')
    if domain not in current_app.config['UNIVERSITY_EMAIL_DOMAINS']:
        return False
    return is_registered_upi(upi)

def is_registered_upi(upi):
    normalized = upi.lower().strip()
    return RegisteredStudent.query.filter_by(upi=normalized).first() is not None

def get_team_by_email(email):
    """
    用學生 email 找到名單上的隊伍

    名單上的 team_name 要跟 Team.name 一樣才算找到
    """
    upi = email.lower().split('@')[0]
    student = RegisteredStudent.query.filter_by(upi=upi).first()
    if not student or not student.team_name:
        return None
    return Team.query.filter_by(name=student.team_name).first()

def create_user_account(name, email, password_hash):
    """
    建立使用者 (註冊和 magic link 共用)

    capstone 學生會自動分配角色並加入名單上的隊伍
    """
    is_capstone = check_capstone_student(email)
    team = get_team_by_email(email) if is_capstone else None

    user = User(
        name=name,
        email=email,
        password_hash=password_hash,
        role='capstoneStudent' if is_capstone else 'visitor',
        links=[]
    )
    if team:
        user.team = team
        if team.project:
            user.project_id = team.project.id

    db.session.add(user)
    return user

def get_current_user():
    """取得當前登入的使用者"""
    try:
        user_id = get_jwt_identity()
        if not user_id:
            return None
        return db.session.get(User, int(user_id))
    except Exception as e:
        logger.error(f"Error getting current user: {str(e)}")
        return None

def get_current_role():
    return get_jwt().get('role')

def get_optional_user_id():
    """公開路由用: 有帶 token 就回傳 user id,沒有就回傳 None"""
    # 過期或無效的 token 當作沒登入
    try:
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
    except (JWTExtendedException, PyJWTError) as e:
        logger.info(f"Ignoring unusable token on public route: {str(e)}")
        return None
    return int(identity) if identity else None

# ============================================
# 角色檢查 Decorator
# ============================================

def roles_required(*roles):
    """
    限制只有特定角色能使用的路由

    用法:
        @roles_required('admin', 'staff')
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = get_jwt().get('role')
            if role not in roles:
                logger.warning(f"Role {role} denied for {request.method} {request.path}")
                return jsonify({'error': 'Access denied. Insufficient permissions.'}), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
def register():
    """
    使用者註冊

    1. 驗證輸入
    2. 判斷是否為 capstone 學生並分配隊伍
    3. 回傳 token 並設定 cookie
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if User.query.filter_by(email=result['email']).first():
        return jsonify({'error': 'User already registered'}), 409

    try:
        user = create_user_account(result['name'], result['email'], hash_password(result['password']))
        db.session.commit()

        logger.info(f"New user registered: {user.email} as {user.role}")

        return auth_response(user, 'User registered successfully', 201)

    except Exception as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {result['email']}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

# ============================================
# Magic Link 註冊
# ============================================

@auth_bp.route('/register/request-magic-link', methods=['POST'])
def request_magic_link():
    """先驗證 email,點信裡的連結才真正建立帳號"""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if User.query.filter_by(email=result['email']).first():
        return jsonify({'error': 'User already registered'}), 409

    raw_token = secrets.token_urlsafe(32)
    ttl = current_app.config['REGISTRATION_TOKEN_TTL_MINUTES']

    try:
        db.session.add(RegistrationToken(
            email=result['email'],
            name=result['name'],
            password_hash=hash_password(result['password']),
            token_hash=hash_token(raw_token),
            expires_at=datetime.utcnow() + timedelta(minutes=ttl)
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Magic link token error for {result['email']}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to create registration link'}), 500

    link = url_for('auth.confirm_magic_link', token=raw_token, _external=True)
    sent = send_registration_magic_link(result['email'], link, result['name'])
    if not sent:
        logger.warning(f"Magic link email could not be sent to {result['email']}")

    return jsonify({'message': 'Verification email sent', 'emailSent': sent}), 200

@auth_bp.route('/register/confirm', methods=['GET'])
def confirm_magic_link():
    """確認 magic link 並建立帳號 (token 只能用一次)"""
    raw_token = request.args.get('token', '')
    if not raw_token:
        return jsonify({'error': 'Token is required'}), 400

    record = RegistrationToken.query.filter_by(token_hash=hash_token(raw_token)).first()
    if not record or record.used_at or record.expires_at < datetime.utcnow():
        return jsonify({'error': 'Invalid or expired token'}), 400

    if User.query.filter_by(email=record.email).first():
        return jsonify({'error': 'User already registered'}), 409

    try:
        user = create_user_account(record.name, record.email, record.password_hash)
        record.used_at = datetime.utcnow()
        db.session.commit()

        logger.info(f"User registered via magic link: {user.email}")

        return auth_response(user, 'Registration confirmed', 201)

    except Exception as e:
        db.session.rollback()
        logger.error(f"Magic link confirm error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

# ============================================
# 登入 / 登出 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
def login():
    """
    使用者登入

    不區分 email/password 錯誤,避免帳號枚舉攻擊
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=result['email']).first()

    bcrypt = get_bcrypt()
    if not user or not bcrypt.check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({'error': 'Invalid credentials'}), 401

    try:
        user.last_login = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        # 這個錯誤不影響登入,只記錄就好
        db.session.rollback()
        logger.error(f"Failed to update last_login for {user.email}: {str(e)}")

    logger.info(f"User logged in: {user.email}")

    return auth_response(user, 'Login successful', 200)

@auth_bp.route('/logout', methods=['POST'])
def logout():
    """清除 token cookie"""
    response = jsonify({'message': 'Logout successful'})
    unset_jwt_cookies(response)
    return response, 200

# ============================================
# Email 檢查 / 重設密碼
# ============================================

@auth_bp.route('/check-email', methods=['GET'])
def check_email():
    email = (request.args.get('email') or '').strip()
    if not email:
        return jsonify({'error': 'Email is required'}), 400

    exists = User.query.filter_by(email=email).first() is not None
    return jsonify({'exists': exists}), 200

@auth_bp.route('/password/request-reset', methods=['POST'])
def request_password_reset():
    """
    申請重設密碼

    不管 email 存不存在都回傳 200,避免帳號枚舉
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RequestResetSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=result['email']).first()
    if user:
        raw_token = secrets.token_urlsafe(32)
        ttl = current_app.config['PASSWORD_RESET_TOKEN_TTL_MINUTES']
        try:
            db.session.add(PasswordResetToken(
                email=user.email,
                token_hash=hash_token(raw_token),
                expires_at=datetime.utcnow() + timedelta(minutes=ttl)
            ))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Password reset token error for {user.email}: {str(e)}", exc_info=True)
            return jsonify({'error': 'Failed to request password reset'}), 500

        client_url = current_app.config['CLIENT_URL'].rstrip('/')
        query = urlencode({'token': raw_token, 'email': user.email})
        link = f"{client_url}/reset-password?{query}"
        send_password_reset_link(user.email, link, user.name)
        logger.info(f"Password reset requested for {user.email}")

    return jsonify({'message': 'If the email is registered, a reset link has been sent'}), 200

@auth_bp.route('/password/reset', methods=['POST'])
def reset_password():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(ResetPasswordSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    record = PasswordResetToken.query.filter_by(
        email=result['email'],
        token_hash=hash_token(result['token'])
    ).first()

    if not record or record.used_at or record.expires_at < datetime.utcnow():
        return jsonify({'error': 'Invalid or expired token'}), 400

    user = User.query.filter_by(email=result['email']).first()
    if not user:
        return jsonify({'error': 'Invalid or expired token'}), 400

    try:
        user.password_hash = hash_password(result['password'])
        record.used_at = datetime.utcnow()
        db.session.commit()

        logger.info(f"Password reset for user: {user.email}")
        return jsonify({'message': 'Password reset successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Password reset error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Password reset failed due to server error'}), 500

# ============================================
# 取得當前使用者資訊
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    user = get_current_user()

    if not user:
        logger.warning(f"Token valid but user not found: {get_jwt_identity()}")
        return jsonify({'error': 'User not found'}), 404

    return jsonify({
        'user': {
            **serialize_auth_user(user),
            'profilePicture': user.profile_picture,
            'team': user.team_id,
            'project': user.project_id,
            'lastLogin': user.last_login.isoformat() if user.last_login else None
        }
    }), 200

# ============================================
# 權限測試用的受保護路由
# ============================================

def _guard_payload(message):
    claims = get_jwt()
    return jsonify({
        'message': message,
        'user': {
            'id': get_jwt_identity(),
            'email': claims.get('email'),
            'role': claims.get('role')
        },
        'timestamp': datetime.utcnow().isoformat()
    }), 200

@auth_bp.route('/profile', methods=['GET'])
@jwt_required()
def protected_profile():
    return _guard_payload('Access granted to protected route')

@auth_bp.route('/admin-only', methods=['GET'])
@roles_required('admin')
def admin_only():
    return _guard_payload('Admin access granted')

@auth_bp.route('/staff-or-admin', methods=['GET'])
@roles_required('admin', 'staff')
def staff_or_admin():
    return _guard_payload('Staff or Admin access granted')

@auth_bp.route('/students-only', methods=['GET'])
@roles_required('capstoneStudent')
def students_only():
    return _guard_payload('Capstone student access granted')
