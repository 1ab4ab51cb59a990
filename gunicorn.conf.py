# gunicorn.conf.py
import multiprocessing
import os

# Network (behind nginx)
bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
forwarded_allow_ips = os.environ.get("FORWARDED_ALLOW_IPS", "127.0.0.1")

# Workers: 2 per core + 1, overridable for small boxes
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
threads = int(os.environ.get("GUNICORN_THREADS", 2))
worker_class = "gthread"
# Paystack verification can take up to PAYSTACK_TIMEOUT (25s)
timeout = 45
graceful_timeout = 30
keepalive = 5
max_requests = 1000
max_requests_jitter = 100

# Logging to stdout/stderr; app logs go through Django's LOGGING
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")

wsgi_app = "unimart_project.wsgi:application"
