"""
Audit sink for material actions (exam upload, assignment creation, submit).

Events are appended to the ``apps.coursework.audit`` log; storing them is
somebody else's job.
"""
import json
import logging

logger = logging.getLogger('apps.coursework.audit')


class LoggingAuditSink:

    def record(self, actor, action, entity_type, entity_id=None, metadata=None):
        event = {
            'action': action,
            'entity_type': entity_type,
            'entity_id': str(entity_id) if entity_id is not None else None,
            'actor_user_id': actor.user_id if actor else None,
            'tenant_id': str(actor.tenant_id) if actor else None,
            'context_role': actor.active_role if actor else None,
            'metadata': metadata or {},
        }
        try:
            logger.info("audit %s", json.dumps(event, default=str, sort_keys=True))
        except Exception:
            logger.exception("Failed to record audit event %s", action)
