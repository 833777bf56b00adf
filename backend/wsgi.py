# backend/wsgi.py
from posrecon import create_app

app = create_app()
