"""Declarative base for workflow queue tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
