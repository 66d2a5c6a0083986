# Overview: Flask extension instances for the primary database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Bound to the primary target. Secondary targets get their own engines in db_router.
db = SQLAlchemy()
migrate = Migrate()
