from sqlalchemy.orm import declarative_base

# Shared declarative base for all models
Base = declarative_base()
