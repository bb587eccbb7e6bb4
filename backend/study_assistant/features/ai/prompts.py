"""
AI feature: System prompt and message assembly.
"""

from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from study_assistant.features.ai.schemas import ChatTurn

SYSTEM_PROMPT = """You are a friendly, helpful study assistant for students of an online course platform.

Your goals:
- Help students with questions about the content of their courses
- Motivate them and offer encouragement when needed
- Suggest resources and study techniques
- Answer clearly, concisely and kindly

Rules:
- Never hand out exam answers directly; guide the student towards the answer
- If you don't know something, say so and suggest where to look for help
- Keep a positive, motivating tone
- Use practical examples whenever possible"""

CONTEXT_BLOCK_TEMPLATE = """

RELEVANT COURSE MATERIAL:
{context}

Use this information to answer."""


PLACEHOLDER_LABEL = "[PLACEHOLDER RESPONSE - configure LLM_API_KEY]"

PLACEHOLDER_REPLIES = (
    "Hi! I'm your study assistant. That looks like an interesting question. "
    "Could you tell me a bit more about the course topic you need help with?",
    "I understand your doubt. Many students find this topic challenging. "
    "Let's go through the concepts step by step. Where would you like to start?",
    "Great question! It shows you're thinking critically about the material. "
    "Let me give you an explanation that helps you understand the concept better.",
    "Thanks for your question. To give you the best possible help the assistant needs "
    "a configured language model. For now, review the course material and come back with specific questions.",
)


def build_system_prompt(context: Sequence[str] = ()) -> str:
    """System instructions, plus a grounding block only when retrieval found something."""
    if not context:
        return SYSTEM_PROMPT
    return SYSTEM_PROMPT + CONTEXT_BLOCK_TEMPLATE.format(context="\n\n".join(context))


def build_messages(
    prompt: str,
    history: Sequence[ChatTurn] = (),
    context: Sequence[str] = (),
) -> list[BaseMessage]:
    """Assemble: system block → prior turns → new user turn.

    System turns from the history are folded into the single leading
    system message; some providers reject system content anywhere else.
    """
    system_parts = [build_system_prompt(context)]
    messages: list[BaseMessage] = []
    for turn in history:
        if turn.role == "user":
            messages.append(HumanMessage(content=turn.content))
        elif turn.role == "assistant":
            messages.append(AIMessage(content=turn.content))
        else:
            system_parts.append(turn.content)
    messages.insert(0, SystemMessage(content="\n\n".join(system_parts)))
    messages.append(HumanMessage(content=prompt.strip()))
    return messages
