# Gunicorn configuration file
#
# gunicorn -c gunicorn_conf.py "src.main:create_app()"

import gc
import os

bind = f"{os.getenv('HOST', '0.0.0.0')}:{os.getenv('PORT', '3001')}"
worker_class = "uvicorn.workers.UvicornWorker"
# 生成缓存、限流计数、临时文件登记均在进程内存中，只能单 worker
workers = 1
# 需大于 REQUEST_TIMEOUT，由应用自身返回 408
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = 30


def when_ready(server):
    """
    Called just after the server is started.
    Freeze GC before forking the worker to optimize Copy-on-Write memory sharing.
    """
    gc.freeze()
    server.log.info("GC frozen for Copy-on-Write optimization")
    server.log.info(f"Objects in permanent generation: {gc.get_freeze_count()}")


def post_fork(server, worker):
    try:
        import resource
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        server.log.info(f"Worker {worker.pid} RSS after fork: {rss} KB")
    except ImportError:
        pass  # Windows 不支持 resource 模块
