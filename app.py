from flask import Flask, jsonify

from config import Config
from logging_config import setup_logging


def create_app():
    logger = setup_logging(Config.LOG_FORMAT)

    app = Flask(__name__)
    app.secret_key = Config.FLASK_SECRET_KEY

    from feature_routes import irrigation_bp
    from irrigation_store import init_irrigation_tables

    init_irrigation_tables()
    app.register_blueprint(irrigation_bp)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    logger.info("Vineyard irrigation API ready")
    return app


if __name__ == '__main__':
    create_app().run(debug=Config.DEBUG, port=Config.PORT)
