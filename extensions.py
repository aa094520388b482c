from flask_jwt_extended import JWTManager, verify_jwt_in_request, get_jwt_identity
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Mail

# ============================================
# 擴展物件 (在 app.py 裡 init_app)
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()
mail = Mail()


def user_or_ip_key():
    """
    Rate limit 的 key

    有登入就用 user id,沒有就用 IP
    """
    try:
        verify_jwt_in_request(optional=True)
        user_id = get_jwt_identity()
    except Exception:
        user_id = None

    if user_id:
        return f"user:{user_id}"
    return get_remote_address()


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
    strategy="fixed-window"
)
