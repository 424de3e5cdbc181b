from .connection import (
    Base,
    build_engine,
    build_session_factory,
    configure_database,
    create_all,
    dispose_db,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    'Base',
    'build_engine',
    'build_session_factory',
    'configure_database',
    'create_all',
    'dispose_db',
    'get_engine',
    'get_session_factory',
    'init_db',
]
