# gunicorn.conf.py
# Serves trade_market_project; every setting below can be tuned per host.
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
proxy_protocol = False
forwarded_allow_ips = "*"

# Workers
workers = int(os.environ.get("GUNICORN_WORKERS", 3))
threads = 2
worker_class = "gthread"
timeout = 60   # request-level timeout for every view
graceful_timeout = 30
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("DJANGO_LOG_LEVEL", "info").lower()

wsgi_app = "trade_market_project.wsgi:application"
