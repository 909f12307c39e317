# backend/wsgi.py
from shopbill import create_app

app = create_app()
