"""
deploy/gunicorn.conf.py
Gunicorn settings for the LearnTrack API

    gunicorn -c deploy/gunicorn.conf.py learntrack.main:app

Workers do not share the per-playlist asyncio locks; cross-worker writes to
the same playlist are ordered by the version compare-and-swap in the store.
"""
import os
import multiprocessing

bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5
graceful_timeout = 30

# stdout/stderr; the container runtime collects them
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

proc_name = "learntrack"
daemon = False

limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def post_fork(server, worker):
    server.log.info(f"Worker spawned (pid: {worker.pid})")


def worker_abort(worker):
    worker.log.warning(f"Worker aborted (pid: {worker.pid}); in-flight progress transactions roll back")
