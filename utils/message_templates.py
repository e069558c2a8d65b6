"""
Message template rendering

Greeting, farewell and menu texts are configured with mustache-style
placeholders such as ``{{name}}`` that are filled in from the contact.
Unknown placeholders render as empty strings.
"""

import re
from typing import Any, Dict, Optional

PLACEHOLDER = re.compile(r'{{\s*([a-zA-Z_]+)\s*}}')


def _looks_like_number(value: str) -> bool:
    return bool(value) and value.lstrip('+').replace(' ', '').isdigit()


def contact_variables(contact: Any) -> Dict[str, str]:
    """Template variables exposed for a contact."""
    if contact is None:
        return {}
    name = (getattr(contact, 'name', None) or '').strip()
    # Don't greet people by their phone number
    display_name = '' if _looks_like_number(name) else name
    return {
        'name': display_name,
        'first_name': display_name.split(' ')[0] if display_name else '',
        'number': getattr(contact, 'number', None) or '',
        'email': getattr(contact, 'email', None) or ''
    }


def render_for_contact(template: Optional[str], contact: Any) -> str:
    """Fill `{{placeholder}}` tokens of a template from a contact."""
    if not template:
        return ''
    variables = contact_variables(contact)
    return PLACEHOLDER.sub(lambda match: variables.get(match.group(1).lower(), ''), template)
