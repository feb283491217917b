# Overview: Flask extension instances for database, migrations and the mail outbox.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.mail_service import MailOutbox

db = SQLAlchemy()
migrate = Migrate()
outbox = MailOutbox()
