import logging

from voice_promptimiser.core.base_target_agent import BaseTargetAgent
from voice_promptimiser.core.cancellation import CancellationToken
from voice_promptimiser.core.errors import ValidationError
from voice_promptimiser.core.eval_entities import Transcript, TranscriptTurn

logger = logging.getLogger(__name__)


class ConversationSimulator:
    """Replays scripted user turns against the target agent, in order."""

    def __init__(self, target_agent: BaseTargetAgent):
        self.target_agent = target_agent

    async def simulate(
        self,
        agent_id: str,
        user_turns: list[str],
        cancel_token: CancellationToken | None = None,
    ) -> Transcript:
        if not user_turns:
            raise ValidationError("user_turns", "cannot simulate a conversation with no user turns")

        turns: list[TranscriptTurn] = []
        conversation_id: str | None = None

        for message in user_turns:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            reply = await self.target_agent.chat(agent_id, message, conversation_id)
            # The first reply opens the conversation; later turns stay linked to it.
            if conversation_id is None:
                conversation_id = reply.conversation_id

            turns.append(TranscriptTurn(role="user", content=message))
            turns.append(TranscriptTurn(role="assistant", content=reply.response_text))

        logger.debug(f"💬 Simulated {len(user_turns)} turns with {agent_id} (conversation {conversation_id})")
        return Transcript(turns=turns, conversation_id=conversation_id)
