"""Background execution: batch executor, scheduler loop and Celery tasks."""
