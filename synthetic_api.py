# synthetic_api.py - Canned responses for the annotation service endpoints that have no offline source

import json
import copy
from typing import Any, Dict, Optional


OFFLINE_USER = 'acct:user@localhost'
SERVICE_BASE = 'http://localhost:8001'

PUBLIC_GROUP = {
    'id': '__world__',
    'name': 'Public',
    'type': 'open',
    'public': True,
    'scoped': False,
    'links': {'html': f'{SERVICE_BASE}/groups/__world__/public'},
}

PAYLOADS: Dict[str, Any] = {
    'api': {
        'message': 'Annotation service offline API',
        'links': {
            'annotation': {
                'create': {'method': 'POST', 'url': f'{SERVICE_BASE}/api/annotations'},
                'delete': {'method': 'DELETE', 'url': f'{SERVICE_BASE}/api/annotations/:id'},
                'read': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/annotations/:id'},
                'update': {'method': 'PATCH', 'url': f'{SERVICE_BASE}/api/annotations/:id'},
            },
            'search': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/search'},
            'links': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/links'},
            'profile': {
                'read': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/profile'},
                'groups': {'read': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/profile/groups'}},
            },
            'groups': {'read': {'method': 'GET', 'url': f'{SERVICE_BASE}/api/groups'}},
        },
    },
    'api/links': {
        'account.settings': f'{SERVICE_BASE}/account/settings',
        'forgot-password': f'{SERVICE_BASE}/forgot-password',
        'groups.new': f'{SERVICE_BASE}/groups/new',
        'help': f'{SERVICE_BASE}/docs/help',
        'oauth.authorize': f'{SERVICE_BASE}/oauth/authorize',
        'oauth.revoke': f'{SERVICE_BASE}/oauth/revoke',
        'search.tag': f'{SERVICE_BASE}/search?q=tag%3A',
        'signup': f'{SERVICE_BASE}/signup',
        'user': f'{SERVICE_BASE}/u/:user',
    },
    'api/profile': {
        'userid': OFFLINE_USER,
        'authority': 'localhost',
        'groups': [PUBLIC_GROUP],
        'features': {},
        'preferences': {'show_sidebar_tutorial': False},
        'user_info': {'display_name': 'Offline User'},
    },
    'api/profile/groups': [PUBLIC_GROUP],
    'api/groups': [PUBLIC_GROUP],
}


def canned_payload(key: str) -> Optional[Any]:
    """Built-in payload for a synthetic key, or None if the key is unknown."""
    if key not in PAYLOADS:
        return None
    return copy.deepcopy(PAYLOADS[key])


def archive_payload_path(key: str) -> str:
    """Where the bundled archive may keep an override for a synthetic key."""
    return f"fake-service/{key}.json"


def encode_json(data: Any) -> bytes:
    return json.dumps(data, indent=2).encode('utf-8')
