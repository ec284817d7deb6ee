"""Recording of in-flight task executions as episodes."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from .store import EpisodeStore, get_episode_store
from .types import (
    Decision,
    Episode,
    EpisodeContext,
    EpisodeOutcome,
    EpisodeOutcomeData,
    EpisodeReflection,
    EpisodeTrajectory,
    EpisodeType,
    Pivot,
    PivotTrigger,
    TrajectoryStep,
)
from ..exceptions import RecordingNotFoundError

logger = logging.getLogger(__name__)


class EpisodeBuilder:
    """Incrementally collects a trajectory and builds an Episode."""

    def __init__(
        self,
        task_id: str,
        folder_id: Optional[str] = None,
        episode_type: EpisodeType = EpisodeType.TASK_EXECUTION,
    ):
        self.task_id = task_id
        self.folder_id = folder_id
        self.episode_type = episode_type
        self.context = EpisodeContext(task_description="")
        self.actions: list[TrajectoryStep] = []
        self.observations: list[str] = []
        self.decisions: list[Decision] = []
        self.pivots: list[Pivot] = []
        self.error_count = 0
        self.tool_call_count = 0
        self.start_time = datetime.now(timezone.utc)

    def set_context(self, **context) -> "EpisodeBuilder":
        self.context = replace(self.context, **context)
        return self

    def add_action(self, step: TrajectoryStep) -> "EpisodeBuilder":
        self.actions.append(step)
        self.tool_call_count += 1
        if not step.success:
            self.error_count += 1
        return self

    def add_observation(self, observation: str) -> "EpisodeBuilder":
        self.observations.append(observation)
        return self

    def add_decision(self, decision: Decision) -> "EpisodeBuilder":
        self.decisions.append(decision)
        return self

    def add_pivot(self, pivot: Pivot) -> "EpisodeBuilder":
        self.pivots.append(pivot)
        return self

    def build(
        self,
        outcome: EpisodeOutcome,
        result: str,
        reflection: EpisodeReflection,
        tags: Optional[list[str]] = None,
    ) -> Episode:
        elapsed = datetime.now(timezone.utc) - self.start_time
        return Episode.create(
            task_id=self.task_id,
            folder_id=self.folder_id,
            episode_type=self.episode_type,
            context=self.context,
            trajectory=EpisodeTrajectory(
                actions=tuple(self.actions),
                observations=tuple(self.observations),
                decisions=tuple(self.decisions),
                pivots=tuple(self.pivots),
            ),
            outcome=EpisodeOutcomeData(
                outcome=outcome,
                result=result,
                duration_ms=int(elapsed.total_seconds() * 1000),
                error_count=self.error_count,
                tool_call_count=self.tool_call_count,
            ),
            reflection=reflection,
            tags=tags,
        )


@dataclass
class RecordingSession:
    id: str
    task_id: str
    folder_id: Optional[str]
    builder: EpisodeBuilder
    is_active: bool = True
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EpisodeRecorder:
    """
    Tracks actions, decisions and outcomes while a task runs, then stores
    the finished trajectory as an episode.
    """

    def __init__(self, store: Optional[EpisodeStore] = None, folder_id: Optional[str] = None):
        self.store = store or get_episode_store(folder_id)
        self.sessions: dict[str, RecordingSession] = {}

    def _active(self, recording_id: str) -> RecordingSession:
        session = self.sessions.get(recording_id)
        if session is None or not session.is_active:
            raise RecordingNotFoundError(recording_id)
        return session

    def start_recording(
        self,
        task_id: str,
        folder_id: Optional[str] = None,
        episode_type: EpisodeType = EpisodeType.TASK_EXECUTION,
    ) -> str:
        """Start recording a new episode, returning the recording id."""
        recording_id = uuid.uuid4().hex[:12]
        self.sessions[recording_id] = RecordingSession(
            id=recording_id,
            task_id=task_id,
            folder_id=folder_id,
            builder=EpisodeBuilder(task_id, folder_id, episode_type),
        )
        logger.debug("Started recording %s for task %s", recording_id, task_id)
        return recording_id

    def set_context(
        self,
        recording_id: str,
        task_description: str,
        project_path: str = "",
        initial_state: str = "",
        agent_provider: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        self._active(recording_id).builder.set_context(
            task_description=task_description,
            project_path=project_path,
            initial_state=initial_state,
            agent_provider=agent_provider,
            session_id=session_id,
        )

    def record_action(
        self,
        recording_id: str,
        action: str,
        success: bool = True,
        tool: Optional[str] = None,
        input: Optional[str] = None,
        output: Optional[str] = None,
        duration_ms: int = 0,
    ):
        """Record an action; failed actions count as errors."""
        self._active(recording_id).builder.add_action(TrajectoryStep(
            action=action,
            success=success,
            tool=tool,
            input=input,
            output=output,
            duration_ms=duration_ms,
        ))

    def record_observation(self, recording_id: str, observation: str):
        self._active(recording_id).builder.add_observation(observation)

    def record_decision(
        self,
        recording_id: str,
        context: str,
        options: list[str],
        chosen: str,
        reasoning: str,
    ):
        self._active(recording_id).builder.add_decision(Decision(
            context=context,
            options=tuple(options),
            chosen=chosen,
            reasoning=reasoning,
        ))

    def record_pivot(
        self,
        recording_id: str,
        from_approach: str,
        to_approach: str,
        reason: str,
        triggered_by: PivotTrigger,
    ):
        self._active(recording_id).builder.add_pivot(Pivot(
            from_approach=from_approach,
            to_approach=to_approach,
            reason=reason,
            triggered_by=triggered_by,
        ))

    async def finish_recording(
        self,
        recording_id: str,
        outcome: EpisodeOutcome,
        result: str,
        reflection: EpisodeReflection,
        tags: Optional[list[str]] = None,
    ) -> Episode:
        """Build the episode, store it and deactivate the recording."""
        session = self._active(recording_id)
        episode = session.builder.build(outcome, result, reflection, tags)

        await self.store.store(episode)
        session.is_active = False

        logger.info(
            "Recorded episode %s for task %s (%s, %d actions)",
            episode.id, session.task_id, outcome.value, len(episode.trajectory.actions),
        )
        return episode

    def cancel_recording(self, recording_id: str):
        session = self.sessions.pop(recording_id, None)
        if session:
            session.is_active = False

    def is_recording(self, recording_id: str) -> bool:
        session = self.sessions.get(recording_id)
        return bool(session and session.is_active)

    def active_sessions(self) -> list[RecordingSession]:
        return [s for s in self.sessions.values() if s.is_active]

    def cleanup_inactive(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Forget finished recordings started before the cutoff."""
        cutoff = datetime.now(timezone.utc) - older_than
        stale = [
            rid for rid, s in self.sessions.items()
            if not s.is_active and s.started_at < cutoff
        ]
        for rid in stale:
            del self.sessions[rid]
        return len(stale)

    async def record_quick_episode(
        self,
        task_id: str,
        task_description: str,
        outcome: EpisodeOutcome,
        result: str,
        reflection: EpisodeReflection,
        folder_id: Optional[str] = None,
        episode_type: EpisodeType = EpisodeType.TASK_EXECUTION,
        agent_provider: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> Episode:
        """Record an episode without step-by-step tracking."""
        recording_id = self.start_recording(task_id, folder_id, episode_type)
        self.set_context(recording_id, task_description, agent_provider=agent_provider)
        return await self.finish_recording(recording_id, outcome, result, reflection, tags)

    async def add_user_feedback(self, episode_id: str, rating: int, feedback: Optional[str] = None) -> Optional[Episode]:
        """Attach a user rating to a stored episode; None if it does not exist."""
        episode = await self.store.get(episode_id)
        if episode is None:
            logger.warning("Cannot add feedback, episode %s not found", episode_id)
            return None

        updated = episode.with_user_feedback(rating, feedback)
        await self.store.update(updated)
        return updated
