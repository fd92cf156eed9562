# Entry point for the Flask CLI: FLASK_APP=qrpark.wsgi
from . import create_app

app = create_app()
