"""
Tests for message template rendering
"""

from types import SimpleNamespace

import pytest

from utils.message_templates import contact_variables, render_for_contact


@pytest.fixture
def contact():
    return SimpleNamespace(name='Ana Souza', number='5511988887777', email='ana@example.com')


class TestRenderForContact:

    def test_placeholders_are_filled(self, contact):
        rendered = render_for_contact('Hi {{first_name}} ({{ name }}), we have {{number}} on file', contact)
        assert rendered == 'Hi Ana (Ana Souza), we have 5511988887777 on file'

    def test_placeholders_are_case_insensitive(self, contact):
        assert render_for_contact('Hello {{Name}}', contact) == 'Hello Ana Souza'

    def test_unknown_placeholders_render_empty(self, contact):
        assert render_for_contact('Order {{order_id}} ready', contact) == 'Order  ready'

    def test_empty_template(self, contact):
        assert render_for_contact(None, contact) == ''
        assert render_for_contact('', contact) == ''

    def test_without_contact(self):
        assert render_for_contact('Hi {{name}}!', None) == 'Hi !'


class TestContactVariables:

    def test_numeric_names_are_not_used_as_greeting(self):
        variables = contact_variables(SimpleNamespace(name='+55 11 98888 7777', number='5511988887777',
                                                      email=None))
        assert variables['name'] == ''
        assert variables['first_name'] == ''
        assert variables['email'] == ''
