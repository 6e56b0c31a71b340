from __future__ import annotations
import os
from boostqueue import create_app
from boostqueue.extensions import db

def main() -> None:
    flask_app = create_app()

    # Local development convenience; production schemas come from scripts/init_db.py
    if os.environ.get("BOOSTQUEUE_CREATE_TABLES", "0") in {"1", "true", "True"}:
        with flask_app.app_context():
            db.create_all()

    flask_app.logger.info("Mounted routes:")
    for rule in sorted(flask_app.url_map.iter_rules(), key=lambda x: x.rule):
        flask_app.logger.info("  %-40s %s", rule.rule, ",".join(sorted(rule.methods - {"HEAD", "OPTIONS"})))

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled)

if __name__ == "__main__":
    main()
