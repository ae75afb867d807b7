# filemanager/monitoring/context.py
"""
Context helpers using contextvars for request/storage propagation.
"""
import contextvars

request_id_var = contextvars.ContextVar("request_id", default=None)
storage_var = contextvars.ContextVar("storage", default=None)

def set_request_context(request_id=None, storage=None):
    if request_id is not None:
        request_id_var.set(request_id)
    if storage is not None:
        storage_var.set(storage)

def get_request_context():
    return {
        "request_id": request_id_var.get(),
        "storage": storage_var.get(),
    }
