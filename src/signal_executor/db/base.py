"""Declarative base shared by all table modules."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
