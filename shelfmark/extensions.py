from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from shelfmark.services.change_feed import ChangeFeed


db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
change_feed = ChangeFeed()
