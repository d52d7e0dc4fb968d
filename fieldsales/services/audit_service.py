from __future__ import annotations

import json
import logging

audit_logger = logging.getLogger('fieldsales.audit')


def log_auth_event(
    *,
    attempted_email: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    user_id: str | None = None,
    failure_reason: str | None = None,
    demo: bool = False,
) -> None:
    payload = {
        'attempted_email': attempted_email,
        'success': success,
        'failure_reason': failure_reason,
        'user_id': user_id,
        'ip': ip,
        'user_agent': user_agent,
        'demo': demo,
    }
    level = logging.INFO if success else logging.WARNING
    audit_logger.log(level, 'AUTH_EVENT %s', json.dumps(payload, default=str, sort_keys=True))


def log_audit(
    *,
    actor_id: str | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    payload = {'actor_id': actor_id, 'action': action, 'ip': ip, 'meta': metadata or {}}
    audit_logger.info('%s %s', action, json.dumps(payload, default=str, sort_keys=True))
