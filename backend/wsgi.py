# backend/wsgi.py
from tillcore import create_app

app = create_app()
