from sqlalchemy import Column, Integer, String
from medcheck.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password = Column(String(200), nullable=False)  # bcrypt hash
    role = Column(String(20), nullable=False, default="doctor")
