"""Reset the development DB from models (not migrations) and stamp Alembic head."""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DB_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                       "instance", "docflow_dev.db")

if os.path.exists(DB_PATH):
    os.remove(DB_PATH)
    print(f"Removed {DB_PATH}")

from docflow import create_app  # noqa: E402

app = create_app("development")
with app.app_context():
    from docflow.models import db
    db.create_all()
    from sqlalchemy import inspect
    tables = inspect(db.engine).get_table_names()
    print(f"Created {len(tables)} tables from models")

    from alembic import command
    from alembic.config import Config
    alembic_cfg = Config("migrations/alembic.ini")
    alembic_cfg.set_main_option("script_location", "migrations")
    command.stamp(alembic_cfg, "head")
    print("Alembic stamped to HEAD")

print("Done — DB ready. Run scripts/seed_demo_circuit.py to populate.")
