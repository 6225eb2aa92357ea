from .session import Base, create_engine, create_session_factory, init_db
from .unit_of_work import SqlAlchemyUnitOfWork, sql_unit_of_work_factory
