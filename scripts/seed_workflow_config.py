"""
Seed request types and default role inheritance edges.
Existing rows are left unchanged. Run from the project root with .env loaded.

Usage:
  python scripts/seed_workflow_config.py                # request types and inheritance
  python scripts/seed_workflow_config.py --types-only   # request types only
"""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.logging import setup_logging
from app.db.init_db import seed_request_types, seed_role_inheritance
from app.db.session import SessionLocal


def main():
    parser = argparse.ArgumentParser(description="Seed absence workflow configuration")
    parser.add_argument("--types-only", action="store_true", help="Skip role inheritance edges")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()
    try:
        types_added = seed_request_types(db)
        edges_added = 0 if args.types_only else seed_role_inheritance(db)
        print(f"Request types added: {types_added}, inheritance edges added: {edges_added}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
