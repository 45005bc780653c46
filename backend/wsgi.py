# Overview: WSGI entrypoint; FLASK_APP target for the CLI and app servers.

from bizdesk import create_app

app = create_app()
