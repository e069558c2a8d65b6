"""
Base Factory Class for Omnidesk Test Data Generation

Factories commit what they create so that rows survive the rollbacks the
services issue after failed operations.
"""

import random

import factory
from factory.alchemy import SQLAlchemyModelFactory
from faker import Faker

from extensions import db

fake = Faker('en_US')


class BaseFactory(SQLAlchemyModelFactory):
    """Base factory class for all engine model factories."""

    class Meta:
        abstract = True
        sqlalchemy_session_factory = lambda: db.session  # noqa: E731
        sqlalchemy_session_persistence = "commit"


class PhoneProvider:
    """Provider for channel phone numbers (digits only, as stored)"""

    @staticmethod
    def whatsapp_number():
        country = random.choice(['55', '1', '44', '351'])
        return f"{country}{random.randint(10 ** 9, 10 ** 10 - 1)}"


def tenant_id_of(obj):
    """Default tenant for a factory row: a fresh tenant."""
    from .tenant_factory import TenantFactory
    return TenantFactory().id


__all__ = ['BaseFactory', 'PhoneProvider', 'fake', 'factory', 'tenant_id_of']
