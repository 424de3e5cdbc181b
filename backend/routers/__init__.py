from .integrity import router as integrity_router, register_error_handlers

__all__ = [
    'integrity_router',
    'register_error_handlers',
]
