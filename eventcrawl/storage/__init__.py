from .engine import create_db_engine, init_db
from .repository import PipelineStore

__all__ = ["PipelineStore", "create_db_engine", "init_db"]
