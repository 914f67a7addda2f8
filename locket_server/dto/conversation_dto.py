from typing import Optional, Dict, Any, List

from locket_server.exception.MessagingError import ValidationError
from locket_server.messaging.models import GroupSettings
from locket_server.utils import validation as v

MAX_NAME_LENGTH = 100
THEMES = ('default', 'dark', 'light', 'custom')

LIST_DEFAULT_LIMIT = 20
LIST_MAX_LIMIT = 100

_GROUP_SETTING_FIELDS = {
    'allowMemberInvite': 'allow_member_invite',
    'allowMemberEdit': 'allow_member_edit',
    'allowMemberDelete': 'allow_member_delete',
    'allowMemberPin': 'allow_member_pin',
}


def _raise_if(errors: Dict[str, str]):
    if errors:
        raise ValidationError(errors)


def _parse_group_settings(raw: Any, errors: Dict[str, str]) -> Dict[str, bool]:
    """Only the keys present in the request are returned (snake_case)."""
    data = v.require_object(raw, 'groupSettings', errors)
    if not data:
        return {}
    out = {}
    for api_name, field in _GROUP_SETTING_FIELDS.items():
        if api_name in data:
            value = data[api_name]
            if not isinstance(value, bool):
                errors[f'groupSettings.{api_name}'] = f'{api_name} must be a boolean'
            else:
                out[field] = value
    return out


def _parse_settings(raw: Any, errors: Dict[str, str]) -> Dict[str, Any]:
    data = v.require_object(raw, 'settings', errors)
    if not data:
        return {}
    out: Dict[str, Any] = {}
    if 'muteNotifications' in data:
        if not isinstance(data['muteNotifications'], bool):
            errors['settings.muteNotifications'] = 'muteNotifications must be a boolean'
        else:
            out['mute_notifications'] = data['muteNotifications']
    if 'customEmoji' in data:
        out['custom_emoji'] = v.parse_string(data['customEmoji'], 'settings.customEmoji', errors, max_length=10)
    if 'theme' in data:
        if data['theme'] not in THEMES:
            errors['settings.theme'] = f'theme must be one of: {", ".join(THEMES)}'
        else:
            out['theme'] = data['theme']
    if 'wallpaper' in data:
        wallpaper = v.parse_string(data['wallpaper'], 'settings.wallpaper', errors, max_length=2048)
        if wallpaper and not wallpaper.startswith(('http://', 'https://')):
            errors['settings.wallpaper'] = 'wallpaper must be a valid URL'
        else:
            out['wallpaper'] = wallpaper
    return out


class CreateConversationRequest:
    def __init__(self, participants: List[str], is_group: bool = False, name: Optional[str] = None,
                 admin: Optional[str] = None, group_settings: Optional[GroupSettings] = None):
        self.participants = participants
        self.is_group = is_group
        self.name = name
        self.admin = admin
        self.group_settings = group_settings or GroupSettings()

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'CreateConversationRequest':
        data = data or {}
        errors: Dict[str, str] = {}
        name = v.parse_string(data.get('name'), 'name', errors, max_length=MAX_NAME_LENGTH) or None
        participants = v.parse_user_id_list(data.get('participants'), 'participants', errors)
        is_group = v.parse_bool(data.get('isGroup'), 'isGroup', errors) or False
        admin = v.parse_user_id(data.get('admin'), 'admin', errors, required=False)
        settings = _parse_group_settings(data.get('groupSettings'), errors)
        _raise_if(errors)
        return cls(participants, is_group, name, admin, GroupSettings(**settings))


class DirectConversationRequest:
    def __init__(self, user_id: str):
        self.user_id = user_id

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'DirectConversationRequest':
        errors: Dict[str, str] = {}
        user_id = v.parse_user_id((data or {}).get('userId'), 'userId', errors)
        _raise_if(errors)
        return cls(user_id)


class UpdateConversationRequest:
    """Partial update. Absent fields are left untouched."""

    def __init__(self, name: Optional[str] = None, name_set: bool = False,
                 group_settings: Optional[Dict[str, bool]] = None, settings: Optional[Dict[str, Any]] = None):
        self.name = name
        self.name_set = name_set
        self.group_settings = group_settings or {}
        self.settings = settings or {}

    @property
    def is_empty(self) -> bool:
        return not (self.name_set or self.group_settings or self.settings)

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'UpdateConversationRequest':
        data = data or {}
        errors: Dict[str, str] = {}
        name_set = 'name' in data
        name = v.parse_string(data.get('name'), 'name', errors, max_length=MAX_NAME_LENGTH) or None
        group_settings = _parse_group_settings(data.get('groupSettings'), errors)
        settings = _parse_settings(data.get('settings'), errors)
        _raise_if(errors)
        request = cls(name, name_set, group_settings, settings)
        if request.is_empty:
            raise ValidationError({'body': 'at least one of name, groupSettings, settings is required'})
        return request


class AddParticipantsRequest:
    def __init__(self, user_ids: List[str]):
        self.user_ids = user_ids

    @classmethod
    def from_request(cls, data: Optional[Dict[str, Any]]) -> 'AddParticipantsRequest':
        errors: Dict[str, str] = {}
        user_ids = v.parse_user_id_list((data or {}).get('userIds'), 'userIds', errors)
        _raise_if(errors)
        return cls(user_ids)


class ListConversationsQuery:
    def __init__(self, limit: int = LIST_DEFAULT_LIMIT, last_updated_at=None):
        self.limit = limit
        self.last_updated_at = last_updated_at

    @classmethod
    def from_request(cls, args) -> 'ListConversationsQuery':
        errors: Dict[str, str] = {}
        limit = v.parse_int(args.get('limit'), 'limit', errors, default=LIST_DEFAULT_LIMIT, minimum=1, maximum=LIST_MAX_LIMIT)
        last_updated_at = v.parse_datetime(args.get('lastUpdatedAt'), 'lastUpdatedAt', errors)
        _raise_if(errors)
        return cls(limit, last_updated_at)
