"""Flask 入口：创建应用、初始化数据库/登录/限流，并注册路由。"""

from flask import Flask
from flask_login import LoginManager

from app_routes import api_bp, auth_bp, limiter
from app_services import api_error
from config import Config
from models import User, db

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    """Flask-Login 回调：根据 user_id 取出用户对象。"""
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    # 纯 API 服务：不跳转登录页，直接返回 401
    return api_error("请先登录", code=401, http_status=401)


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)

    # Ensure core tables exist when running via `flask run` (tolerate missing DB in dev)
    try:
        with app.app_context():
            db.create_all()
    except Exception as exc:
        app.logger.warning("Skipping db.create_all during startup: %s", exc)

    login_manager.init_app(app)
    limiter.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    return app


if __name__ == '__main__':
    create_app().run(debug=True, port=5000)
