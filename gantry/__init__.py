from typing import Any, Dict, Optional

from flask import Flask

from gantry.config import Config
from gantry.routes import main_bp
from gantry.services.run_service import RunService, build_run_service


def create_app(
    config_overrides: Optional[Dict[str, Any]] = None,
    run_service: Optional[RunService] = None,
) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    Config.init_app(app)

    service = run_service or build_run_service(app.config)
    service.start()
    app.extensions["gantry_runs"] = service

    app.register_blueprint(main_bp)

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, host="0.0.0.0", port=7766)
