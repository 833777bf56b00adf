# Overview: Flask extension instances for database, migrations and background dispatch.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .dispatcher import WebhookDispatcher

db = SQLAlchemy()
migrate = Migrate()
webhook_dispatcher = WebhookDispatcher()
