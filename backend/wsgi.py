# backend/wsgi.py
from protrack import create_app

app = create_app()
