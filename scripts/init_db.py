#!/usr/bin/env python3
"""Initialize database tables"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from boostqueue import create_app
from boostqueue.business_settings import SETTING_TYPES
from boostqueue.extensions import db
from boostqueue.models import Setting

def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        print("✅ Database tables initialized successfully")

        # Store defaults so staff see every setting on first load
        created = 0
        for key, setting_type in SETTING_TYPES.items():
            if db.session.get(Setting, key) is None:
                db.session.add(Setting(key=key, value=setting_type().to_value()))
                created += 1
        db.session.commit()
        print(f"⚙️  Default settings stored ({created} new)")

if __name__ == "__main__":
    init_database()
