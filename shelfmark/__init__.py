import logging

import click
from flask import Flask

from shelfmark.api import api_bp
from shelfmark.auth import auth_bp
from shelfmark.config import Config
from shelfmark.extensions import change_feed, db, login_manager, migrate
from shelfmark.jobs.scheduler import start_scheduler
from shelfmark.models import User
from shelfmark.services.row_policy import install_row_policy


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, app.config["LOG_LEVEL"], logging.INFO))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    change_feed.init_app(app)
    install_row_policy()

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Shelfmark database.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("password")
    def create_user_command(username, password):
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f"user {username} already exists")
        user = User(username=username, is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        print(f"Created user {username} (id={user.id}).")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
