"""
Logging configuration for the BambooHold service.

Every line is one JSON object. Audit events carry an `event_type` and their
own fields next to the standard ones, and all lines logged while a request
is served carry its request id.

Plaintexts and private keys are never logged; handles and addresses are.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

request_id_var: ContextVar[str] = ContextVar('request_id', default='')

AUDIT_FIELDS = "audit_fields"


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id
        entry.update(getattr(record, AUDIT_FIELDS, {}))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Typed audit events of the service.

    Usage:
        audit_log.submission_accepted(principal, index, timestamp)
        audit_log.disclosure_decision(user, "DENIED", denied=[...])
    """

    def __init__(self, name: str = "bamboohold.audit"):
        self._logger = logging.getLogger(name)

    def _event(self, level: int, event_type: str, summary: str, **fields) -> None:
        fields["event_type"] = event_type
        self._logger.log(level, "%s: %s", event_type, summary, extra={AUDIT_FIELDS: fields})

    def submission_accepted(self, principal: str, index: int, timestamp: int) -> None:
        self._event(
            logging.INFO, "SUBMISSION_ACCEPTED", f"record {index} stored for {principal}",
            principal=principal, index=index, timestamp=timestamp
        )

    def proof_rejected(self, principal: str, reason: str) -> None:
        self._event(
            logging.WARNING, "PROOF_REJECTED", f"input proof rejected for {principal}",
            principal=principal, reason=reason
        )

    def reauthorization(self, principal: str, index: Optional[int], new_grants: int) -> None:
        scope = "all records" if index is None else f"record {index}"
        self._event(
            logging.INFO, "REAUTHORIZATION", f"{scope} of {principal} re-granted",
            principal=principal, index=index, new_grants=new_grants
        )

    def disclosure_request(self, user_address: str, handles: List[str], contracts: List[str]) -> None:
        self._event(
            logging.INFO, "DISCLOSURE_REQUEST", f"{len(handles)} handle(s) requested by {user_address}",
            user_address=user_address, handles=handles, contracts=contracts
        )

    def disclosure_decision(
        self,
        user_address: str,
        decision: str,
        disclosed: int = 0,
        denied: Optional[List[str]] = None,
        reason: Optional[str] = None
    ) -> None:
        """DISCLOSED, DENIED (missing grants) or REJECTED (statement refused)."""
        level = logging.INFO if decision == "DISCLOSED" else logging.WARNING
        self._event(
            level, "DISCLOSURE_DECISION", f"{decision} for {user_address}",
            user_address=user_address, decision=decision, disclosed=disclosed,
            denied=denied or [], reason=reason
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
        }.get(severity, logging.WARNING)
        self._event(level, "SECURITY_EVENT", event, security_event=event, severity=severity, **details)

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._event(
            logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{client_id} on {endpoint}",
            client_id=client_id, endpoint=endpoint
        )


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Route the root logger to stdout, as JSON lines unless `json_format` is off."""
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())


def set_request_id(request_id: Optional[str] = None) -> str:
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
