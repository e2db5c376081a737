from . import run, status, token

__all__ = ['run', 'status', 'token']
