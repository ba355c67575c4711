"""Gunicorn production configuration.

Run: gunicorn -c gunicorn.conf.py reimburse.main:app
"""
import multiprocessing
import os

bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
# Sync workflow handlers run in the threadpool; each holds a DB connection while it works.
threads = int(os.getenv("GUNICORN_THREADS", 1))
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
