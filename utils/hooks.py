# utils/hooks.py
"""
Named extension points. Handlers receive a mutable dict and may change it;
callers read the dict back after call_all().
"""
import traceback

_handlers = {}


def register(name, func):
    _handlers.setdefault(name, []).append(func)

def unregister(name, func):
    if func in _handlers.get(name, []):
        _handlers[name].remove(func)

def call_all(name, data):
    """Runs every handler registered for name. A failing handler does not stop the others."""
    for func in list(_handlers.get(name, [])):
        try:
            func(data)
        except Exception as e:
            print(f"ERROR: Hook handler {getattr(func, '__name__', func)} for '{name}' failed: {e}")
            traceback.print_exc()
    return data
