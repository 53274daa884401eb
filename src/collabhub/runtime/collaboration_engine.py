"""
Collaboration Engine

Brokers multi-agent collaboration sessions and task-scoped teams.

Sessions: proposed -> active -> resolved | abandoned.
Teams: forming -> active -> completed | dissolved.

Invitations are ``request`` messages sent through the Communication Hub with
``requires_response`` set. A correlated ``response`` (or an explicit
accept/confirm call) acknowledges the invitation. Under the ``auto_accept``
activation policy the engine also answers invitations on behalf of available
agents as soon as they are delivered.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..registry import AgentRegistry
from ..schemas.common_enums import (
    ActivationPolicy,
    AgentAvailability,
    ComplexityTier,
    MessagePriority,
    MessageType,
    SessionStatus,
    TeamStatus,
)
from ..schemas.collaboration import (
    CollaborationContext,
    CollaborationSession,
    ProblemDefinition,
    SessionDecision,
    Team,
)
from ..schemas.messages import Message, MessageContent, utc_now
from ..utils.config_manager import CollaborationConfiguration, get_config
from ..utils.exceptions import (
    AlreadyInitializedError,
    DanglingCorrelationError,
    DependencyNotReadyError,
    DuplicateParticipantError,
    EmptyMembershipError,
    InvalidBudgetError,
    InvalidDeadlineError,
    InvalidDecisionError,
    InvalidMessageError,
    InvalidProblemDefinitionError,
    InvalidTransitionError,
    PermissionDeniedError,
    UnknownAgentError,
    UnknownSessionError,
    UnknownTeamError,
)
from ..utils.id_utils import SESSION_PREFIX, TEAM_PREFIX, generate_id
from .communication_hub import CommunicationHub
from .knowledge_exchange import KnowledgeExchange

__all__ = ["CollaborationEngine"]

logger = logging.getLogger(__name__)

SESSION = "session"
TEAM = "team"

# Scoring weights for suggested teams: capability match dominates, an idle
# agent beats a busy one.
CAPABILITY_WEIGHT = 0.4
AVAILABILITY_WEIGHT = 0.1

_TEAM_PRIORITY = {
    ComplexityTier.LOW: MessagePriority.MEDIUM,
    ComplexityTier.MEDIUM: MessagePriority.MEDIUM,
    ComplexityTier.HIGH: MessagePriority.HIGH,
    ComplexityTier.CRITICAL: MessagePriority.CRITICAL,
}


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CollaborationEngine:
    """Owns collaboration sessions and teams."""

    def __init__(
        self,
        registry: AgentRegistry,
        hub: CommunicationHub,
        knowledge: KnowledgeExchange,
        config: Optional[CollaborationConfiguration] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.hub = hub
        self.knowledge = knowledge
        self.config = config or get_config().collaboration
        self._clock = clock or utc_now
        self._lock = threading.RLock()

        self._sessions: Dict[str, CollaborationSession] = {}
        self._teams: Dict[str, Team] = {}
        # invitation message id -> (entity kind, entity id, invitee)
        self._invitations: Dict[str, Tuple[str, str, str]] = {}

        self._subscriptions: List[str] = []
        self._initialized = False
        self._initializing = False

    @property
    def is_ready(self) -> bool:
        return self._initialized

    @property
    def activation_policy(self) -> ActivationPolicy:
        return ActivationPolicy(self.config.activation_policy)

    async def initialize(self) -> None:
        if self._initialized:
            logger.debug("CollaborationEngine already initialized")
            return
        if self._initializing:
            raise AlreadyInitializedError("CollaborationEngine initialization is already in progress")
        if not self.hub.is_ready:
            raise DependencyNotReadyError("CollaborationEngine requires an initialized CommunicationHub")
        if not self.knowledge.is_ready:
            raise DependencyNotReadyError("CollaborationEngine requires an initialized KnowledgeExchange")

        self._initializing = True
        try:
            self._subscriptions = [
                self.hub.subscribe(self._on_response_delivered, MessageType.RESPONSE),
                self.hub.subscribe(self._on_invitation_delivered, MessageType.REQUEST),
            ]
            self.hub.attach_collaboration_engine(self)
            self._initialized = True
            logger.info(f"CollaborationEngine operational (activation policy: {self.activation_policy.value})")
        finally:
            self._initializing = False

    async def shutdown(self) -> None:
        for subscription_id in self._subscriptions:
            self.hub.unsubscribe(subscription_id)
        self._subscriptions = []
        self._initialized = False

    def _require_ready(self) -> None:
        if not self._initialized:
            raise DependencyNotReadyError("CollaborationEngine is not initialized")

    def _require_hub(self) -> None:
        if not self.hub.is_ready:
            raise DependencyNotReadyError("CommunicationHub is not initialized")

    def _validate_membership(self, lead: Optional[str], members: Union[str, Sequence[str]], label: str) -> List[str]:
        if isinstance(members, str):
            members = [members]
        members = list(members)
        if not members:
            raise EmptyMembershipError(f"At least one {label} is required")
        for name in members:
            if not self.registry.exists(name):
                raise UnknownAgentError(name)
        seen = set()
        for name in members:
            if name in seen:
                raise DuplicateParticipantError(f"Duplicate {label}: {name}", {label: name})
            if lead is not None and name == lead:
                raise DuplicateParticipantError(
                    f"Initiator {name} cannot also be a {label}", {label: name}
                )
            seen.add(name)
        return members

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    async def request_collaboration(
        self,
        initiator: str,
        participants: Union[str, Sequence[str]],
        goal: str,
        context: Union[CollaborationContext, Dict[str, Any], None] = None,
    ) -> str:
        """Propose a session and invite every participant; returns the session id.

        Returns right after the invitations are enqueued. The session stays
        ``proposed`` until a participant acknowledges.
        """
        self._require_ready()
        self._require_hub()
        if not self.registry.exists(initiator):
            raise UnknownAgentError(initiator)
        participants = self._validate_membership(initiator, participants, "participant")
        if not goal or not goal.strip():
            raise InvalidMessageError("Collaboration goal must not be blank")
        try:
            context = CollaborationContext.model_validate(context or {})
        except ValidationError as e:
            raise InvalidMessageError(f"Invalid collaboration context: {e}") from e

        session = CollaborationSession(
            id=generate_id(SESSION_PREFIX),
            initiator=initiator,
            participants=participants,
            goal=goal.strip(),
            context=context,
            created_at=self._clock(),
        )
        with self._lock:
            self._sessions[session.id] = session

        content_data = {
            "session_id": session.id,
            "goal": session.goal,
            "initiator": initiator,
            "participants": list(participants),
            "context": context.model_dump(mode="json"),
        }
        try:
            for participant in participants:
                message_id = await self.hub.send_message(
                    initiator,
                    participant,
                    MessageType.REQUEST,
                    MessagePriority.HIGH,
                    MessageContent(subject=f"Collaboration Request: {session.goal}", data=content_data),
                    requires_response=True,
                )
                with self._lock:
                    session.invitations[participant] = message_id
                    self._invitations[message_id] = (SESSION, session.id, participant)
        except Exception:
            self.hub.withdraw_requests(session.invitations.values())
            self._discard(SESSION, session.id)
            logger.error(f"Collaboration session {session.id} rolled back: invitations could not be sent")
            raise

        logger.info(f"Collaboration session proposed: {session.id} by {initiator} with {participants} ({session.goal})")
        return session.id

    def _get_session(self, session_id: str) -> CollaborationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(f"Unknown collaboration session: {session_id}", {"session_id": session_id})
        return session

    def _acknowledge_session(self, session_id: str, participant: str, strict: bool = True) -> CollaborationSession:
        with self._lock:
            session = self._get_session(session_id)
            if participant not in session.participants:
                raise PermissionDeniedError(
                    f"Agent {participant} is not a participant of {session_id}",
                    {"session_id": session_id, "agent": participant},
                )
            if session.status.is_terminal:
                if strict:
                    raise InvalidTransitionError(SESSION, session_id, session.status.value, SessionStatus.ACTIVE.value)
                return session
            if participant not in session.acknowledged_by:
                session.acknowledged_by.append(participant)
            if session.status == SessionStatus.PROPOSED:
                session.status = SessionStatus.ACTIVE
                session.activated_at = self._clock()
                logger.info(f"Collaboration session {session_id} active (acknowledged by {participant})")
            return session

    async def accept_collaboration(self, session_id: str, participant: str) -> CollaborationSession:
        """Acknowledge an invitation; the first acknowledgment activates the session."""
        self._require_ready()
        session = self._acknowledge_session(session_id, participant)
        await self._answer_invitation(
            session.invitations.get(participant), participant, session.initiator,
            {"session_id": session_id, "accepted": True},
        )
        return self.get_session(session_id)

    def record_decision(
        self,
        session_id: str,
        decision: str,
        consensus: float,
        participants: Optional[Sequence[str]] = None,
    ) -> CollaborationSession:
        """Record a decision on an active session.

        Once the average consensus exceeds the configured threshold the
        session is resolved with the decision as its outcome.
        """
        with self._lock:
            session = self._get_session(session_id)
            if session.status != SessionStatus.ACTIVE:
                raise InvalidTransitionError(SESSION, session_id, session.status.value, "decision")
            try:
                entry = SessionDecision(
                    decision=decision,
                    consensus=consensus,
                    participants=list(participants or session.acknowledged_by),
                    timestamp=self._clock(),
                )
            except ValidationError as e:
                raise InvalidDecisionError(
                    f"Invalid decision for {session_id}: {e}", {"session_id": session_id}
                ) from e
            session.decisions.append(entry)
            level = self.consensus_level(session_id)
            threshold = self.config.consensus_threshold
            if threshold is not None and level is not None and level > threshold:
                self._close_session(session, SessionStatus.RESOLVED, f"Consensus reached: {decision}")
            return session.model_copy(deep=True)

    def consensus_level(self, session_id: str) -> Optional[float]:
        """Average consensus over recorded decisions; None without decisions."""
        with self._lock:
            decisions = self._get_session(session_id).decisions
            if not decisions:
                return None
            return sum(d.consensus for d in decisions) / len(decisions)

    def resolve_collaboration(self, session_id: str, outcome: str, abandoned: bool = False) -> CollaborationSession:
        """Close a session. Only active sessions can be resolved; proposed or
        active ones can be abandoned."""
        target = SessionStatus.ABANDONED if abandoned else SessionStatus.RESOLVED
        with self._lock:
            session = self._get_session(session_id)
            allowed = (SessionStatus.ACTIVE,) if target == SessionStatus.RESOLVED else (
                SessionStatus.PROPOSED, SessionStatus.ACTIVE)
            if session.status not in allowed:
                raise InvalidTransitionError(SESSION, session_id, session.status.value, target.value)
            self._close_session(session, target, outcome)
            return session.model_copy(deep=True)

    def cancel_collaboration(self, session_id: str, requested_by: str) -> CollaborationSession:
        """Initiator-only cancellation of a session that is still proposed."""
        with self._lock:
            session = self._get_session(session_id)
            if requested_by != session.initiator:
                raise PermissionDeniedError(
                    f"Only initiator {session.initiator} can cancel {session_id}",
                    {"session_id": session_id, "agent": requested_by},
                )
            if session.status != SessionStatus.PROPOSED:
                raise InvalidTransitionError(SESSION, session_id, session.status.value, SessionStatus.ABANDONED.value)
            self._close_session(session, SessionStatus.ABANDONED, f"Cancelled by {requested_by}")
            return session.model_copy(deep=True)

    def _close_session(self, session: CollaborationSession, status: SessionStatus, outcome: str) -> None:
        session.status = status
        session.outcome = outcome
        session.resolved_at = self._clock()
        logger.info(f"Collaboration session {session.id} {status.value}: {outcome}")

    def session_elapsed(self, session_id: str, now: Optional[datetime] = None) -> timedelta:
        """Time since the session was proposed (until it closed, if it has)."""
        with self._lock:
            session = self._get_session(session_id)
            end = session.resolved_at or now or self._clock()
            return end - session.created_at

    def abandon_stale_sessions(
        self,
        timeout: Union[timedelta, float, None] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Abandon proposed sessions nobody acknowledged within ``timeout``.

        Defaults to ``collaboration.session_timeout_seconds``; with no
        timeout configured nothing is abandoned.
        """
        if timeout is None:
            if self.config.session_timeout_seconds is None:
                return []
            timeout = timedelta(seconds=self.config.session_timeout_seconds)
        elif not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)

        now = now or self._clock()
        abandoned = []
        with self._lock:
            for session in self._sessions.values():
                if session.status == SessionStatus.PROPOSED and now - session.created_at > timeout:
                    self._close_session(session, SessionStatus.ABANDONED, "No participant acknowledged in time")
                    abandoned.append(session.id)
        return abandoned

    def get_session(self, session_id: str) -> CollaborationSession:
        with self._lock:
            return self._get_session(session_id).model_copy(deep=True)

    def get_session_status(self, session_id: str) -> SessionStatus:
        with self._lock:
            return self._get_session(session_id).status

    def list_sessions(self, status: Union[SessionStatus, str, None] = None) -> List[CollaborationSession]:
        wanted = SessionStatus(status) if status is not None else None
        with self._lock:
            return [
                s.model_copy(deep=True) for s in self._sessions.values()
                if wanted is None or s.status == wanted
            ]

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------
    def _parse_problem(self, problem: Union[ProblemDefinition, Dict[str, Any]]) -> ProblemDefinition:
        if isinstance(problem, ProblemDefinition):
            return problem
        try:
            return ProblemDefinition.model_validate(problem)
        except ValidationError as e:
            fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if "resources" in fields:
                raise InvalidBudgetError(f"Invalid resource budget: {e}") from e
            if "deadline" in fields:
                raise InvalidDeadlineError(f"Invalid deadline: {e}") from e
            raise InvalidProblemDefinitionError(f"Invalid problem definition: {e}") from e

    @staticmethod
    def _validate_budget(problem: ProblemDefinition) -> None:
        for name, value in problem.resources.fields().items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                raise InvalidBudgetError(f"Budget field {name} must be numeric, got {value!r}", {"field": name})
            if value < 0:
                raise InvalidBudgetError(f"Budget field {name} must not be negative, got {value}", {"field": name})

    async def form_team(
        self,
        purpose: str,
        members: Union[str, Sequence[str]],
        problem_definition: Union[ProblemDefinition, Dict[str, Any]],
    ) -> str:
        """Create a team in ``forming`` status and invite its members; returns the team id.

        The deadline must be strictly in the future and every budget field
        non-negative. The team becomes ``active`` once all members confirm.
        A coordinator listed as a member counts as confirmed, but the team is
        always returned in ``forming`` status.
        """
        self._require_ready()
        self._require_hub()
        if not purpose or not purpose.strip():
            raise InvalidMessageError("Team purpose must not be blank")
        purpose = purpose.strip()
        members = self._validate_membership(None, members, "member")
        problem = self._parse_problem(problem_definition)

        now = self._clock()
        deadline = _as_utc(problem.deadline)
        if deadline <= now:
            raise InvalidDeadlineError(
                f"Deadline {deadline.isoformat()} is not in the future", {"deadline": deadline.isoformat()}
            )
        self._validate_budget(problem)

        coordinator = self.config.coordinator_agent
        if not self.registry.exists(coordinator):
            raise UnknownAgentError(coordinator, f"Coordinator agent '{coordinator}' is not registered")

        team = Team(
            id=generate_id(TEAM_PREFIX),
            purpose=purpose,
            members=members,
            coordinator=coordinator,
            problem=problem.model_copy(update={"deadline": deadline}),
            created_at=now,
        )
        if coordinator in members:
            team.confirmed_members.append(coordinator)
        with self._lock:
            self._teams[team.id] = team

        priority = _TEAM_PRIORITY[problem.complexity]
        content = MessageContent(
            subject=f"Team Invitation: {purpose}",
            data={
                "team_id": team.id,
                "purpose": purpose,
                "members": list(members),
                "problem_type": problem.problem_type,
                "complexity": problem.complexity.value,
                "deadline": deadline.isoformat(),
            },
        )
        try:
            for member in members:
                if member == coordinator:
                    continue
                message_id = await self.hub.send_message(
                    coordinator, member, MessageType.REQUEST, priority, content, requires_response=True,
                )
                with self._lock:
                    team.invitations[member] = message_id
                    self._invitations[message_id] = (TEAM, team.id, member)
        except Exception:
            self.hub.withdraw_requests(team.invitations.values())
            self._discard(TEAM, team.id)
            logger.error(f"Team {team.id} rolled back: invitations could not be sent")
            raise

        logger.info(f"Team forming: {team.id} '{purpose}' members={members} deadline={deadline.isoformat()}")
        return team.id

    def suggest_team(self, required_expertise: Union[str, Sequence[str]], size: Optional[int] = None) -> List[str]:
        """Rank registered agents for a problem by expertise match.

        An agent matches an expertise term when one of its capability tags
        contains the term (case-insensitive). Score is the matched fraction
        weighted by ``CAPABILITY_WEIGHT`` plus ``AVAILABILITY_WEIGHT`` for an
        available agent; offline agents are never suggested. With no match the
        configured fallback team for the first matching keyword (or the
        default fallback) is returned, limited to registered agents.
        """
        if isinstance(required_expertise, str):
            required_expertise = [required_expertise]
        terms = [t.strip().lower() for t in required_expertise if isinstance(t, str) and t.strip()]
        if not terms:
            raise InvalidProblemDefinitionError("At least one required expertise term is needed")
        if size is not None and size < 1:
            raise InvalidProblemDefinitionError(f"Team size must be positive, got {size}")

        scored = []
        for card in self.registry.list_agents():
            if card.availability == AgentAvailability.OFFLINE:
                continue
            tags = [tag.lower() for tag in card.capability_tags()]
            matched = sum(1 for term in terms if any(term in tag for tag in tags))
            if not matched:
                continue
            score = matched / len(terms) * CAPABILITY_WEIGHT + (AVAILABILITY_WEIGHT if card.is_available else 0.0)
            scored.append((score, card.name))
        # stable sort keeps registration order among equal scores
        scored.sort(key=lambda entry: -entry[0])
        team = [name for _, name in scored]

        if not team:
            team = self._fallback_team(terms)
            logger.debug(f"No agent matches {terms}; using fallback team {team}")
        return team[:size] if size else team

    def _fallback_team(self, terms: List[str]) -> List[str]:
        candidates = self.config.default_fallback_team
        for keyword, agents in self.config.team_fallbacks.items():
            if any(keyword.lower() in term for term in terms):
                candidates = agents
                break
        return [
            name for name in candidates
            if self.registry.exists(name) and self.registry.get(name).availability != AgentAvailability.OFFLINE
        ]

    def _get_team(self, team_id: str) -> Team:
        team = self._teams.get(team_id)
        if team is None:
            raise UnknownTeamError(f"Unknown team: {team_id}", {"team_id": team_id})
        return team

    def _activate_team_if_complete(self, team: Team) -> None:
        if team.status == TeamStatus.FORMING and set(team.confirmed_members) >= set(team.members):
            team.status = TeamStatus.ACTIVE
            team.activated_at = self._clock()
            logger.info(f"Team {team.id} active: all {len(team.members)} members confirmed")

    def _confirm_member(self, team_id: str, member: str, strict: bool = True) -> Team:
        with self._lock:
            team = self._get_team(team_id)
            if member not in team.members:
                raise PermissionDeniedError(
                    f"Agent {member} is not a member of {team_id}", {"team_id": team_id, "agent": member}
                )
            if team.status.is_terminal:
                if strict:
                    raise InvalidTransitionError(TEAM, team_id, team.status.value, TeamStatus.ACTIVE.value)
                return team
            if member not in team.confirmed_members:
                team.confirmed_members.append(member)
            self._activate_team_if_complete(team)
            return team

    async def confirm_team_membership(self, team_id: str, member: str) -> Team:
        """Confirm a member; the team activates when everyone has confirmed."""
        self._require_ready()
        team = self._confirm_member(team_id, member)
        await self._answer_invitation(
            team.invitations.get(member), member, team.coordinator,
            {"team_id": team_id, "accepted": True},
        )
        return self.get_team(team_id)

    def _close_team(self, team_id: str, target: TeamStatus, allowed: Tuple[TeamStatus, ...], outcome: str) -> Team:
        with self._lock:
            team = self._get_team(team_id)
            if team.status not in allowed:
                raise InvalidTransitionError(TEAM, team_id, team.status.value, target.value)
            team.status = target
            team.outcome = outcome
            team.closed_at = self._clock()
            logger.info(f"Team {team_id} {target.value}: {outcome}")
            return team.model_copy(deep=True)

    def complete_team(self, team_id: str, outcome: str) -> Team:
        return self._close_team(team_id, TeamStatus.COMPLETED, (TeamStatus.ACTIVE,), outcome)

    def dissolve_team(self, team_id: str, reason: str) -> Team:
        return self._close_team(team_id, TeamStatus.DISSOLVED, (TeamStatus.FORMING, TeamStatus.ACTIVE), reason)

    def cancel_team(self, team_id: str, requested_by: str) -> Team:
        """Coordinator-only cancellation of a team that is still forming."""
        with self._lock:
            team = self._get_team(team_id)
            if requested_by != team.coordinator:
                raise PermissionDeniedError(
                    f"Only coordinator {team.coordinator} can cancel {team_id}",
                    {"team_id": team_id, "agent": requested_by},
                )
            return self._close_team(team_id, TeamStatus.DISSOLVED, (TeamStatus.FORMING,), f"Cancelled by {requested_by}")

    def is_team_overdue(self, team_id: str, now: Optional[datetime] = None) -> bool:
        """True when an open team has reached its deadline. Nothing is changed."""
        with self._lock:
            team = self._get_team(team_id)
            return not team.status.is_terminal and _as_utc(now or self._clock()) >= team.problem.deadline

    def get_team(self, team_id: str) -> Team:
        with self._lock:
            return self._get_team(team_id).model_copy(deep=True)

    def get_team_status(self, team_id: str) -> TeamStatus:
        with self._lock:
            return self._get_team(team_id).status

    def list_teams(self, status: Union[TeamStatus, str, None] = None) -> List[Team]:
        wanted = TeamStatus(status) if status is not None else None
        with self._lock:
            return [t.model_copy(deep=True) for t in self._teams.values() if wanted is None or t.status == wanted]

    # ------------------------------------------------------------------
    # Acknowledgment plumbing
    # ------------------------------------------------------------------
    def _discard(self, kind: str, entity_id: str) -> None:
        with self._lock:
            store = self._sessions if kind == SESSION else self._teams
            store.pop(entity_id, None)
            for message_id in [mid for mid, ref in self._invitations.items() if ref[1] == entity_id]:
                del self._invitations[message_id]

    async def _answer_invitation(
        self,
        invitation_id: Optional[str],
        invitee: str,
        inviter: str,
        data: Dict[str, Any],
    ) -> Optional[str]:
        """Send the correlated response for an invitation unless it is answered."""
        if invitation_id is None or self.hub.is_answered(invitation_id):
            return None
        if not self.registry.exists(invitee) or not self.registry.exists(inviter):
            logger.debug(f"Not answering {invitation_id}: {invitee} or {inviter} is no longer registered")
            return None
        try:
            return await self.hub.send_message(
                invitee, inviter, MessageType.RESPONSE, MessagePriority.MEDIUM,
                MessageContent(subject="Invitation accepted", data=data),
                correlation_id=invitation_id,
            )
        except DanglingCorrelationError:
            logger.debug(f"Invitation {invitation_id} was answered concurrently")
            return None

    def _on_response_delivered(self, message: Message, recipient: str) -> None:
        with self._lock:
            ref = self._invitations.get(message.correlation_id or "")
        if ref is None:
            return
        kind, entity_id, invitee = ref
        if message.sender != invitee:
            return
        if message.content.data.get("accepted") is False:
            logger.info(f"{invitee} declined invitation to {kind} {entity_id}")
            return
        try:
            if kind == SESSION:
                self._acknowledge_session(entity_id, invitee, strict=False)
            else:
                self._confirm_member(entity_id, invitee, strict=False)
        except (UnknownSessionError, UnknownTeamError):
            logger.debug(f"Response for discarded {kind} {entity_id} ignored")

    async def _on_invitation_delivered(self, message: Message, recipient: str) -> None:
        if self.activation_policy != ActivationPolicy.AUTO_ACCEPT:
            return
        with self._lock:
            ref = self._invitations.get(message.id)
        if ref is None or ref[2] != recipient:
            return
        if not self.registry.exists(recipient) or not self.registry.get(recipient).is_available:
            logger.debug(f"{recipient} unavailable; leaving invitation {message.id} open")
            return
        kind, entity_id, invitee = ref
        with self._lock:
            store = self._sessions if kind == SESSION else self._teams
            entity = store.get(entity_id)
            if entity is None or entity.status.is_terminal:
                return
        if kind == SESSION:
            self._acknowledge_session(entity_id, invitee, strict=False)
            data = {"session_id": entity_id, "accepted": True, "auto": True}
        else:
            self._confirm_member(entity_id, invitee, strict=False)
            data = {"team_id": entity_id, "accepted": True, "auto": True}
        await self._answer_invitation(message.id, invitee, message.sender, data)
        logger.debug(f"Auto-accepted {kind} {entity_id} for {invitee}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            sessions = Counter(s.status.value for s in self._sessions.values())
            teams = Counter(t.status.value for t in self._teams.values())
            return {
                "total_sessions": sum(sessions.values()),
                "sessions_by_status": dict(sessions),
                "total_teams": sum(teams.values()),
                "teams_by_status": dict(teams),
                "open_invitations": sum(1 for mid in self._invitations if not self.hub.is_answered(mid)),
            }
