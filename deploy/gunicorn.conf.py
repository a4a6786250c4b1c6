import multiprocessing
import os

bind = os.getenv("ATTENDANCE_BIND", "127.0.0.1:8000")
# Each worker keeps its own partition table cache.
workers = int(os.getenv("ATTENDANCE_WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8)))
worker_class = "uvicorn.workers.UvicornWorker"
wsgi_app = "college_attendance.main:app"
# Absence dispatch pauses between WhatsApp batches, so requests can run long.
timeout = int(os.getenv("ATTENDANCE_WORKER_TIMEOUT", "180"))
graceful_timeout = 30
keepalive = 5
loglevel = "info"
accesslog = "-"
errorlog = "-"
