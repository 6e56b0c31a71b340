#!/usr/bin/env python3
"""Seed the database with sample boosting packages."""
import sys
from decimal import Decimal
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from boostqueue import create_app
from boostqueue.extensions import db
from boostqueue.models import Package

def seed_packages():
    """Add the sample package catalogue if it is empty."""
    app = create_app()

    with app.app_context():
        existing_count = Package.query.count()
        if existing_count > 0:
            print(f"⏭️  Catalogue already has packages ({existing_count}). Skipping...")
            return

        sample_packages = [
            {
                "name": "Placement Matches",
                "description": "Play out all ten placement games with a coach",
                "price": "39.99",
                "estimated_duration": 120,
            },
            {
                "name": "Rank Boost (1 Division)",
                "description": "Climb one division in a single sitting",
                "price": "24.99",
                "estimated_duration": 90,
            },
            {
                "name": "Coaching Session",
                "description": "Live VOD review and duo games",
                "price": "19.99",
                "estimated_duration": 60,
            },
            {
                "name": "Quick Win Pack",
                "description": "Three ranked wins, duo queue",
                "price": "14.99",
                "estimated_duration": 30,
            },
        ]

        for position, package_data in enumerate(sample_packages):
            package = Package(
                name=package_data["name"],
                description=package_data["description"],
                price=Decimal(package_data["price"]),
                estimated_duration=package_data["estimated_duration"],
                position=position,
                active=True,
            )
            db.session.add(package)
            print(f"  ✓ Added: {package_data['name']} (${package_data['price']}, {package_data['estimated_duration']} min)")

        db.session.commit()
        print("\n✅ Packages seeded successfully!")

        total_packages = Package.query.count()
        print(f"📊 Total packages in database: {total_packages}")

if __name__ == "__main__":
    seed_packages()
