"""Declarative base for the cg_* tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
