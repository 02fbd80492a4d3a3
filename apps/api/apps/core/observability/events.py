"""
Domain events logging helpers.

Provides structured event logging for medical history edit sessions.
"""
from typing import Dict, Optional
from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'ledger_committed', 'file_orphaned')
        entity_type: Type of entity (e.g., 'Patient')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, etc.)
        **extra_fields: Additional fields to log (will be sanitized)

    Example:
        log_domain_event(
            'medical_history_saved',
            entity_type='Patient',
            entity_id=str(patient.id),
            entity_ids={'clinic_id': patient.clinic_id},
            result='success',
            uploaded=2,
            deleted=1,
        )
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'partial', 'blocked']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_orphaned_file(file_ref: str, reason: str, phase: str, **extra):
    """
    Log a remote file that was left behind after its reference was removed.

    Orphans are an accepted outcome of best-effort deletes; they must stay
    visible in logs so storage can be reconciled later.
    """
    log_domain_event(
        'file_orphaned',
        entity_type='StoredFile',
        entity_id=file_ref,
        result='warning',
        reason=reason,
        phase=phase,
        **extra
    )
