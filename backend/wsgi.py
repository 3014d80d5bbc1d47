# backend/wsgi.py
# FLASK_APP=wsgi.py flask <group> <command>
from storefront import create_app

app = create_app()
