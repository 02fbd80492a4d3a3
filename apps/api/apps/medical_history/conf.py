"""
Settings for medical history edit sessions.

Values come from the ``MEDICAL_HISTORY`` dict in Django settings; anything
missing falls back to the defaults below.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from django.conf import settings


DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB

DEFAULT_ALLOWED_EXTENSIONS = (
    'pdf', 'doc', 'docx', 'xls', 'xlsx',
    'jpg', 'jpeg', 'png', 'gif', 'webp', 'heic',
)

DEFAULT_ALLOWED_MIME_TYPES = (
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'image/*',
)

UPLOAD_STRATEGY_DEFERRED = 'deferred'
UPLOAD_STRATEGY_EAGER = 'eager'


@dataclass(frozen=True)
class MedicalHistoryConfig:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_extensions: Tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    allowed_mime_types: Tuple[str, ...] = DEFAULT_ALLOWED_MIME_TYPES
    upload_strategy: str = UPLOAD_STRATEGY_DEFERRED
    api_base_url: Optional[str] = None
    http_timeout: float = 30.0
    delete_workers: int = 4
    extra: dict = field(default_factory=dict)


def get_config(**overrides) -> MedicalHistoryConfig:
    """
    Build the active configuration.

    Keyword overrides win over Django settings, which win over defaults.
    """
    values = dict(getattr(settings, 'MEDICAL_HISTORY', {}) or {})
    values.update(overrides)

    known = {
        'max_upload_bytes': int,
        'allowed_extensions': lambda v: tuple(e.lower().lstrip('.') for e in v),
        'allowed_mime_types': lambda v: tuple(m.lower() for m in v),
        'upload_strategy': str,
        'api_base_url': lambda v: v.rstrip('/') if v else None,
        'http_timeout': float,
        'delete_workers': int,
    }
    kwargs = {}
    extra = {}
    for key, value in values.items():
        key = key.lower()
        if key in known:
            kwargs[key] = known[key](value)
        else:
            extra[key] = value

    strategy = kwargs.get('upload_strategy', UPLOAD_STRATEGY_DEFERRED)
    if strategy not in (UPLOAD_STRATEGY_DEFERRED, UPLOAD_STRATEGY_EAGER):
        raise ValueError(f"Unknown upload strategy: {strategy}")

    return MedicalHistoryConfig(extra=extra, **kwargs)
