from sqlalchemy import Column, Integer, String, Boolean
from uam.core.database import Base

# Read-only views of master data owned by other services.

class User(Base):
    __tablename__ = "user_master"
    id = Column(Integer, primary_key=True)
    employee_name = Column(String(255), nullable=False)
    employee_code = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

class Application(Base):
    __tablename__ = "application_master"
    id = Column(Integer, primary_key=True)
    display_name = Column(String(255), nullable=False)
    plant_id = Column(Integer, nullable=True, index=True)
    department_id = Column(Integer, nullable=True, index=True)

class Plant(Base):
    __tablename__ = "plant_master"
    id = Column(Integer, primary_key=True)
    plant_name = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
