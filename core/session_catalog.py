# core/session_catalog.py
"""Read-only catalog of named sessions used to seed references.

The catalog can be overridden by a YAML file of the form::

    sessions:
      session_id:
        name: Human readable name
        references: [TagA, TagB]
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    id: str
    name: str
    references: tuple = field(default_factory=tuple)


DEFAULT_SESSIONS = (
    Session("session_proj_alpha", "Project Alpha - Phase 1 Keywords",
            ("AlphaCore", "SynergyMax", "QuantumLeap", "NovaMetric", "ZenithPoint")),
    Session("session_client_beta", "Client Beta - Approved Product Names",
            ("ProductX", "ServiceY", "SolutionZ", "BetaFeature", "ClientBrandName")),
    Session("session_research_gamma", "Research Gamma - Core Concepts",
            ("MethodologyA", "TheoremB", "HypothesisC", "VariableD", "ConclusionE")),
    Session("session_marketing_q1", "Marketing Q1 - Campaign Tags",
            ("#SpringSale", "#NewProductLaunch", "#EarlyBird", "#LimitedTimeOffer", "#Q1Promo")),
    Session("session_dev_sprint_5", "Dev Sprint 5 - Feature IDs",
            ("FEAT-101", "FEAT-102-Subtask", "BUG-205", "UIUX-007", "API-042")),
)


class SessionCatalog:

    def __init__(self, sessions=DEFAULT_SESSIONS):
        self._sessions: Dict[str, Session] = {s.id: s for s in sessions}

    @classmethod
    def from_yaml(cls, path: str) -> 'SessionCatalog':
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Session catalog not found at {path}; using built-in sessions")
            return cls()
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed session catalog at {path}") from exc

        sessions = []
        for session_id, entry in (data.get("sessions") or {}).items():
            entry = entry or {}
            sessions.append(Session(
                id=str(session_id),
                name=str(entry.get("name", session_id)),
                references=tuple(str(r) for r in entry.get("references", [])),
            ))
        logger.info(f"Loaded {len(sessions)} sessions from {path}")
        return cls(sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def references_for(self, session_id: str) -> List[str]:
        session = self._sessions.get(session_id)
        return list(session.references) if session else []

    def search(self, term: str = "", exclude_name: Optional[str] = None) -> List[Session]:
        """Sessions whose name contains *term* (case-insensitive), minus the loaded one."""
        needle = term.strip().lower()
        return [
            s for s in self._sessions.values()
            if s.name != exclude_name and (not needle or needle in s.name.lower())
        ]

    def create(self, name: str) -> Session:
        """Register an empty session. Blank names are rejected."""
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Session name must not be empty")
        session = Session(id=str(uuid.uuid4()), name=clean)
        self._sessions[session.id] = session
        return session

    def __len__(self) -> int:
        return len(self._sessions)
