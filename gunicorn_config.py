import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
wsgi_app = "app:app"
workers = 1
threads = 4
worker_class = "gthread"
# Must stay above OPENAI_TIMEOUT
timeout = 90
graceful_timeout = 30
keepalive = 5
preload_app = False
accesslog = "-"
errorlog = "-"
loglevel = "info"

# Log detailed information about worker restarts
worker_exit = lambda server, worker: server.log.info("Worker exited (pid: %s)", worker.pid)
