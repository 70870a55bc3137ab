"""Translation between LeaveRequest models and stored documents.

Stored documents may predate the role renaming: their approval records can
be keyed by legacy names (`director`, `ao`), their flows can use legacy or
upper-case names, and records may use `status` instead of `decision`. This
codec is the only place that knows about those shapes.

Documents from before the move to snake_case carry camelCase top-level and
hostel keys (`leaveType`, `approvalFlow`, `isUsed`, `studentId`, ...).
They are renamed on read; a snake_case key wins when both spellings exist.

When alias mirroring is on, every record is written under its canonical
name and under each legacy alias with identical values, so clients that
still read the old keys keep working.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_snake

from ..exceptions import ValidationError
from ..models import ApprovalRecord, LeaveRequest
from ..roles import RoleAliasResolver
from .states import compute_overall_status

logger = logging.getLogger(__name__)

APPROVALS_KEY = "approvals"

# camelCase names whose snake_case form is not the current field name
RENAMED_FIELDS = {
    "studentId": "requester_id",
    "studentName": "requester_name",
    "studentPRN": "prn",
    "currentStatus": "overall_status",
    "isScmsStudent": "is_partner_institution",
}

# Per-role boolean map kept next to `approvals`; the records supersede it
DROPPED_FIELDS = frozenset(["approvalStatus"])


def normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename camelCase keys to the snake_case field names."""
    normalized: Dict[str, Any] = {}
    renamed: Dict[str, Any] = {}
    for key, value in data.items():
        if key in DROPPED_FIELDS:
            continue
        if key in RENAMED_FIELDS:
            renamed[RENAMED_FIELDS[key]] = value
        elif key != key.lower():
            renamed[to_snake(key)] = value
        else:
            normalized[key] = value
    for key, value in renamed.items():
        normalized.setdefault(key, value)
    return normalized


class LeaveRequestCodec:
    """Encodes and decodes leave request documents."""

    def __init__(
        self,
        resolver: RoleAliasResolver,
        *,
        mirror_legacy_aliases: bool = True,
        default_flow: Optional[Callable[[str], List[str]]] = None,
    ):
        """
        Args:
            resolver: Role alias resolver
            mirror_legacy_aliases: Also write records under legacy role names
            default_flow: Flow lookup for documents stored without a flow
        """
        self.resolver = resolver
        self.mirror_legacy_aliases = mirror_legacy_aliases
        self.default_flow = default_flow

    def encode(self, request: LeaveRequest) -> Dict[str, Any]:
        """Convert a request to a stored document (without its id)."""
        data = request.model_dump(mode="json", exclude={"id", "approval_records"})
        data["overall_status"] = compute_overall_status(
            request.approval_flow, request.approval_records
        ).value

        approvals: Dict[str, Dict[str, Any]] = {}
        for role, record in request.approval_records.items():
            entry = self._encode_record(record)
            approvals[role] = entry
            if self.mirror_legacy_aliases:
                for alias in sorted(self.resolver.aliases(role)):
                    approvals[alias] = dict(entry)
        data[APPROVALS_KEY] = approvals
        return data

    def decode(self, doc_id: str, data: Mapping[str, Any]) -> LeaveRequest:
        """
        Convert a stored document to a canonical LeaveRequest.

        Raises:
            ValidationError: If the document cannot be read as a leave request
        """
        fields = normalize_keys(data)
        fields.pop("id", None)
        if isinstance(fields.get("hostel"), Mapping):
            fields["hostel"] = normalize_keys(fields["hostel"])
        raw_approvals = fields.pop(APPROVALS_KEY, None)
        legacy_records = fields.pop("approval_records", None)
        raw_approvals = raw_approvals or legacy_records or {}
        stored_status = fields.pop("overall_status", None)

        raw_flow = fields.pop("approval_flow", None)
        if not raw_flow:
            if self.default_flow is None:
                raise ValidationError(f"Leave request {doc_id} has no approval flow")
            raw_flow = self.default_flow(str(fields.get("leave_type", "")))
        flow = self.resolver.canonicalize_flow(raw_flow)

        records = self._decode_records(doc_id, raw_approvals)
        for role in flow:
            records.setdefault(role, ApprovalRecord.pending(role))

        computed = compute_overall_status(flow, records)
        if stored_status is not None and stored_status != computed.value:
            logger.warning(
                f"Leave request {doc_id} stored status {stored_status} disagrees with "
                f"its records ({computed.value}); using the records"
            )

        try:
            return LeaveRequest(
                id=doc_id,
                approval_flow=flow,
                approval_records=records,
                overall_status=computed,
                **fields,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Stored leave request {doc_id} is malformed: {e}")

    def _encode_record(self, record: ApprovalRecord) -> Dict[str, Any]:
        entry = record.model_dump(mode="json", exclude={"decision"})
        entry["status"] = record.decision.value
        return entry

    def _decode_records(
        self, doc_id: str, raw_approvals: Mapping[str, Any]
    ) -> Dict[str, ApprovalRecord]:
        records: Dict[str, ApprovalRecord] = {}
        from_canonical_key: Dict[str, bool] = {}

        for key, raw in raw_approvals.items():
            canonical = self.resolver.table.lookup(key)
            if canonical is None:
                logger.warning(f"Leave request {doc_id}: ignoring record for unknown role {key}")
                continue
            if not isinstance(raw, Mapping):
                continue

            record = self._decode_record(doc_id, canonical, raw)
            is_canonical_key = key.strip().lower() == canonical

            existing = records.get(canonical)
            if existing is not None:
                if existing != record:
                    logger.warning(
                        f"Leave request {doc_id}: records under {key} and its alias "
                        f"disagree, keeping the canonical entry"
                    )
                if from_canonical_key[canonical] or not is_canonical_key:
                    continue

            records[canonical] = record
            from_canonical_key[canonical] = is_canonical_key

        return records

    @staticmethod
    def _decode_record(doc_id: str, role: str, raw: Mapping[str, Any]) -> ApprovalRecord:
        decision = raw.get("decision") or raw.get("status") or "pending"
        values = {
            "role": role,
            "decision": decision,
            "timestamp": raw.get("timestamp"),
            "approver_id": raw.get("approver_id") or raw.get("approverId"),
            "approver_name": raw.get("approver_name") or raw.get("approverName"),
            "comments": raw.get("comments") or "",
        }
        try:
            return ApprovalRecord(**values)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Stored leave request {doc_id} has a malformed {role} record: {e}"
            )
