"""
Contact Factory for Test Data Generation
"""

import factory

from crm_database import Contact
from .base import BaseFactory, PhoneProvider, tenant_id_of


class ContactFactory(BaseFactory):
    """Factory for generating Contact test instances"""

    class Meta:
        model = Contact

    tenant_id = factory.LazyAttribute(tenant_id_of)
    name = factory.Faker('name')
    number = factory.LazyFunction(PhoneProvider.whatsapp_number)
    alt_id = None
    email = ''
    is_group = False

    class Params:
        group = factory.Trait(
            is_group=True,
            number=factory.Sequence(lambda n: f"1203630{n:05d}-group")
        )
