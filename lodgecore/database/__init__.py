from .conexion import Base, SessionLocal, build_engine, engine, get_db, unit_of_work

__all__ = ["Base", "SessionLocal", "build_engine", "engine", "get_db", "unit_of_work"]
