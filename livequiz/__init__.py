from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
import requests
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # The host controller owns the session state for this process
    from livequiz.services.quiz.controller import HostController
    flask_app.extensions['livequiz'] = HostController(flask_app)

    from livequiz.api.session import session_api
    flask_app.register_blueprint(session_api, url_prefix='/api')

    from livequiz.api.host import host_api
    flask_app.register_blueprint(host_api, url_prefix='/api/host')

    # Register Socket.IO event handlers
    from livequiz.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('init-db')
    def init_db_command():
        """Creates the tables and the session state row."""
        from livequiz.services.quiz.state import load_state
        with flask_app.app_context():
            db.create_all()
            load_state()
            db.session.commit()
        click.echo('Database initialised.')

    @click.command('load-questions')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    @click.option('--replace', is_flag=True, help='Drop the current catalog first (only while waiting).')
    def load_questions_command(path, replace):
        """Loads the question catalog from a JSON file."""
        from livequiz.services.quiz.catalog import load_catalog_file
        from livequiz.services.quiz.errors import QuizError
        with flask_app.app_context():
            try:
                count = load_catalog_file(path, replace=replace)
            except ValueError as exc:
                raise click.ClickException(f'Invalid question file: {exc}')
            except QuizError as exc:
                raise click.ClickException(exc.message)
        click.echo(f'Loaded {count} questions.')

    @click.command('reset-session')
    @click.option('--yes', is_flag=True, help='Confirm deleting all responses and scores.')
    @click.option('--url', default='http://localhost:5000', envvar='LIVEQUIZ_URL', show_default=True,
                  help='Address of the running quiz server.')
    def reset_session_command(yes, url):
        """Asks the running server to delete all responses, zero scores and return to waiting."""
        if not yes:
            yes = click.confirm('Delete all responses and reset every score?')
        if not yes:
            click.echo('Aborted.')
            return
        # The server process owns the buffer, the countdown and the sockets
        try:
            resp = requests.post(f"{url.rstrip('/')}/api/host/reset", json={'confirm': True}, timeout=10)
        except requests.RequestException as exc:
            raise click.ClickException(f'Could not reach the quiz server: {exc}')
        if resp.status_code != 200:
            raise click.ClickException(f'Reset failed ({resp.status_code}): {resp.text}')
        click.echo('Session has been reset.')

    flask_app.cli.add_command(init_db_command)
    flask_app.cli.add_command(load_questions_command)
    flask_app.cli.add_command(reset_session_command)

    return flask_app


def get_host_controller(app=None):
    """Return the host controller registered on the (current) app."""
    if app is None:
        from flask import current_app
        app = current_app
    return app.extensions['livequiz']
