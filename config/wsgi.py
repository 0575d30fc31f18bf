import os

import socketio
from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

django_application = get_wsgi_application()

from qrcall.apps import get_services  # noqa: E402

# Socket.IO on /socket.io/, everything else goes to Django
application = socketio.WSGIApp(get_services().sio, django_application)
