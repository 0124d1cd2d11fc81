"""
Security Logger for Encrypted Inference
=======================================
Audit trail showing the evaluating party only ever handles ciphertext,
its own plaintext model, and public evaluation keys.

Entities:
- key_owner: generates context and keys, holds the secret key
- client:    encrypts features, decrypts the prediction
- evaluator: runs the encrypted regression
"""

import json
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

KEY_OWNER = 'key_owner'
CLIENT = 'client'
EVALUATOR = 'evaluator'


class DataType(Enum):
    """Classification of data handled in an operation"""
    CIPHERTEXT = "ciphertext"        # Encrypted data - safe
    PLAINTEXT = "plaintext"          # Raw user features/predictions - privacy risk
    MODEL_PARAM = "model_param"      # Evaluator's own weights and bias
    KEY_MATERIAL = "key_material"    # Public / evaluation keys
    SECRET_KEY = "secret_key"        # Decryption capability
    PUBLIC_PARAM = "public_param"    # Scheme parameters, sizes, levels


class OperationType(Enum):
    """Types of operations in the system"""
    GENERATE_CONTEXT = "generate_context"
    GENERATE_KEYS = "generate_keys"
    PERSIST = "persist"
    LOAD = "load"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    ENCODE = "encode"
    MULTIPLY = "multiply"
    ROTATE_SUM = "rotate_sum"
    ADD = "add"
    EVALUATE = "evaluate"


# What the evaluator must never touch
_FORBIDDEN_FOR_EVALUATOR = {DataType.PLAINTEXT, DataType.SECRET_KEY}


@dataclass
class SecurityLogEntry:
    """Single security audit log entry"""
    timestamp: str
    entity: str
    operation: str
    data_types: List[str]
    is_safe: bool        # False if the evaluator touched forbidden data
    details: Dict[str, Any]
    sequence_id: int

    def to_dict(self) -> dict:
        return asdict(self)


class SecurityLogger:
    """
    Append-only audit log for proving privacy preservation.

    Every operation is logged with who performed it, what data types were
    involved, and whether that exposed plaintext or the secret key to the
    evaluator.
    """

    def __init__(self, log_file: Optional[str] = None):
        """
        Args:
            log_file: Optional JSON-lines file to persist entries
        """
        self._entries: List[SecurityLogEntry] = []
        self._lock = threading.Lock()
        self._sequence = 0
        self.log_file = Path(log_file) if log_file else None

        if self.log_file and self.log_file.exists():
            self._load_from_file()

    def log(self,
            entity: str,
            operation: OperationType,
            data_types: List[DataType],
            details: Dict[str, Any] = None) -> SecurityLogEntry:
        """
        Log a security-relevant operation.

        Args:
            entity: KEY_OWNER, CLIENT or EVALUATOR
            operation: Type of operation performed
            data_types: Types of data involved in the operation
            details: Additional context (never plaintext values)

        Returns:
            The created log entry
        """
        with self._lock:
            self._sequence += 1

            is_safe = not (entity == EVALUATOR
                           and _FORBIDDEN_FOR_EVALUATOR.intersection(data_types))

            entry = SecurityLogEntry(
                timestamp=datetime.now().isoformat(),
                entity=entity,
                operation=operation.value,
                data_types=[dt.value for dt in data_types],
                is_safe=is_safe,
                details=details or {},
                sequence_id=self._sequence
            )
            self._entries.append(entry)

            if self.log_file:
                self._append_to_file(entry)

            return entry

    def get_all_entries(self) -> List[SecurityLogEntry]:
        return list(self._entries)

    def get_entries_for_entity(self, entity: str) -> List[SecurityLogEntry]:
        return [e for e in self._entries if e.entity == entity]

    def get_operations(self, entity: str) -> List[str]:
        """Operation names performed by ``entity``, in order"""
        return [e.operation for e in self.get_entries_for_entity(entity)]

    def get_violations(self) -> List[SecurityLogEntry]:
        return [e for e in self._entries if not e.is_safe]

    def verify_no_violations(self) -> bool:
        return len(self.get_violations()) == 0

    def get_evaluator_summary(self) -> Dict[str, Any]:
        """Summary of evaluator operations for audit"""
        evaluator_entries = self.get_entries_for_entity(EVALUATOR)

        data_types_seen = set()
        for entry in evaluator_entries:
            data_types_seen.update(entry.data_types)

        return {
            'total_operations': len(evaluator_entries),
            'data_types_handled': sorted(data_types_seen),
            'plaintext_access': DataType.PLAINTEXT.value in data_types_seen,
            'secret_key_access': DataType.SECRET_KEY.value in data_types_seen,
            'violations': len([e for e in evaluator_entries if not e.is_safe]),
            'privacy_preserved': not data_types_seen.intersection(
                dt.value for dt in _FORBIDDEN_FOR_EVALUATOR)
        }

    def generate_audit_report(self) -> Dict[str, Any]:
        summary = self.get_evaluator_summary()

        return {
            'report_generated': datetime.now().isoformat(),
            'total_log_entries': len(self._entries),
            'entities': sorted(set(e.entity for e in self._entries)),
            'evaluator_privacy_audit': summary,
            'security_violations': [e.to_dict() for e in self.get_violations()],
            'conclusion': (
                "PRIVACY PRESERVED: Evaluator never accessed plaintext data or the secret key."
                if summary['privacy_preserved']
                else "PRIVACY VIOLATION: Evaluator accessed plaintext data or the secret key!"
            )
        }

    def _append_to_file(self, entry: SecurityLogEntry):
        with open(self.log_file, 'a') as f:
            f.write(json.dumps(entry.to_dict()) + '\n')

    def _load_from_file(self):
        with open(self.log_file, 'r') as f:
            for line in f:
                if line.strip():
                    data = json.loads(line)
                    self._entries.append(SecurityLogEntry(**data))
                    self._sequence = max(self._sequence, data['sequence_id'])

    def clear(self):
        """Clear all entries (for testing)"""
        self._entries.clear()
        self._sequence = 0
        if self.log_file and self.log_file.exists():
            self.log_file.unlink()
