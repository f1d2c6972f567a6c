"""
Agent replies.

The system prompt is assembled from a per-role profile, the shared task-format
instructions and the rendered ContextBundle. ``OpenAIResponder`` sends it to a
chat completion model; anything implementing ``Responder`` can stand in.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple

from agentboard.context import ContextBundle
from agentboard.domain import Agent, AgentRole
from agentboard.errors import ResponderError
from agentboard.logging import get_logger, log_extra
from agentboard.metrics import metrics

log = get_logger(__name__)

EMPTY_REPLY = "I couldn't generate a response."


class Responder(Protocol):
    def respond(self, agent: Agent, prompt: str, context: ContextBundle) -> str: ...


@dataclass(frozen=True)
class RoleProfile:
    persona: str
    responsibilities: Tuple[str, ...]
    decision_guidelines: str


ROLE_PROFILES = {
    AgentRole.COORDINATOR: RoleProfile(
        persona=(
            "You are an AI Coordinator Agent named {name}. Your role is to manage and prioritize tasks, "
            "coordinate between other agents, and provide high-level oversight of the development process."
        ),
        responsibilities=(
            "Breaking down project requirements into manageable tasks",
            "Assigning tasks to the appropriate agents (Developer, QA, Tester)",
            "Monitoring progress and handling dependencies",
            "Ensuring all requirements are met through proper task management",
        ),
        decision_guidelines=(
            "When a new project is started or when asked about tasks, provide a structured task breakdown "
            "with priorities and assignments."
        ),
    ),
    AgentRole.DEVELOPER: RoleProfile(
        persona=(
            "You are an AI Developer Agent named {name}. Your role is to write high-quality code, "
            "implement features, and find elegant solutions to technical problems."
        ),
        responsibilities=(
            "Implementing frontend and backend functionality",
            "Writing clean, maintainable code with proper documentation",
            "Solving technical challenges efficiently",
            "Following best practices for security and performance",
        ),
        decision_guidelines=(
            "When implementing features, you can suggest additional tasks that would improve the "
            "implementation or address technical debt."
        ),
    ),
    AgentRole.QA: RoleProfile(
        persona="You are an AI QA Agent named {name}. Your role is to review code for bugs, edge cases, and potential issues.",
        responsibilities=(
            "Identifying potential bugs and edge cases",
            "Suggesting improvements for reliability",
            "Ensuring proper error handling",
            "Checking for security vulnerabilities",
        ),
        decision_guidelines=(
            "When reviewing implementations, create tasks for issues that need to be fixed or improvements "
            "that should be made."
        ),
    ),
    AgentRole.TESTER: RoleProfile(
        persona=(
            "You are an AI Tester Agent named {name}. Your role is to verify that implementations match "
            "specifications, design test cases, and ensure quality across the system."
        ),
        responsibilities=(
            "Creating comprehensive test plans and test cases",
            "Verifying functionality against requirements",
            "Testing edge cases and user scenarios",
            "Ensuring a high-quality user experience",
        ),
        decision_guidelines="After testing, create tasks for any issues found or test cases that need to be implemented.",
    ),
    AgentRole.DESIGNER: RoleProfile(
        persona=(
            "You are an AI UX Designer Agent named {name}. Your role is to shape user flows, layouts and "
            "interaction details so features are usable and consistent."
        ),
        responsibilities=(
            "Designing user flows and wireframes for new features",
            "Keeping visual and interaction patterns consistent",
            "Reviewing implementations for usability and accessibility",
            "Turning feedback into concrete design improvements",
        ),
        decision_guidelines="When proposing designs, create tasks for the screens and components that need to be built or revised.",
    ),
}

TASK_CAPABILITIES = """You can create tasks in the following format in your responses:
- Start with a clear task title
- Provide a detailed description of what needs to be done
- Use bullet points for task breakdowns if needed
- Specify priority (low, medium, high)
- Optionally suggest which agent should handle the task

Our system will automatically extract tasks from your responses when you list or describe tasks that need to be done."""


def _persona_block(agent: Agent) -> str:
    profile = ROLE_PROFILES.get(agent.role)
    if profile is None:
        description = agent.description or "Your role is to assist with software development tasks."
        return f"You are an AI Agent named {agent.name}. {description}"
    responsibilities = "\n".join(f"{n}. {item}" for n, item in enumerate(profile.responsibilities, start=1))
    return (
        f"{profile.persona.format(name=agent.name)}\n\n"
        f"Your responsibilities:\n{responsibilities}\n\n"
        f"{TASK_CAPABILITIES}\n\n"
        f"{profile.decision_guidelines}"
    )


def _context_block(context: ContextBundle) -> str:
    parts: List[str] = []
    project = context.project
    if project is not None:
        parts.append(
            "Current Project Information:\n"
            f"- Name: {project.name}\n"
            f"- Description: {project.description or 'No description provided'}\n"
            f"- Status: {project.status}\n"
            f"- ID: {project.id}\n"
        )
    if context.related_tasks:
        lines = ["Current project tasks:"]
        for task in context.related_tasks:
            assignee = f"assigned to agent #{task.assigned_to}" if task.assigned_to else "unassigned"
            kind = "Feature" if task.is_feature else "Task"
            lines.append(f"- {kind} #{task.id}: {task.title} ({task.status}, {assignee}, {task.progress or 0}% complete)")
            if task.description:
                lines.append(f"  Description: {task.description}")
        parts.append("\n".join(lines) + "\n")
    elif project is not None:
        parts.append("This project currently has no tasks defined.\n")
    if context.agents:
        lines = ["Available agents (use these IDs when suggesting assignments):"]
        lines.extend(f"- Agent #{agent.id}: {agent.name} ({agent.role})" for agent in context.agents)
        parts.append("\n".join(lines) + "\n")
    if context.task is not None:
        task = context.task
        lines = [
            "Current task:",
            f"- Task #{task.id}: {task.title} ({task.status}, priority {task.priority}, {task.progress or 0}% complete)",
        ]
        if task.description:
            lines.append(f"  Description: {task.description}")
        if context.parent_task is not None:
            lines.append(f"- Part of feature #{context.parent_task.id}: {context.parent_task.title}")
        parts.append("\n".join(lines) + "\n")
    if context.conversation_history:
        parts.append(f"Recent Conversation History:\n{context.conversation_history}\n")
    if context.all_projects:
        lines = ["All current projects:"]
        for other in context.all_projects:
            marker = ", CURRENT PROJECT" if project is not None and other.id == project.id else ""
            lines.append(f"- Project #{other.id}: {other.name} (Status: {other.status}{marker})")
        parts.append("\n".join(lines) + "\n")
    return "\n".join(parts)


def build_system_prompt(agent: Agent, context: ContextBundle) -> str:
    prompt = _persona_block(agent)
    context_text = _context_block(context)
    if context_text:
        prompt += f"\n\nHere is some context about the current state:\n{context_text}"
    return prompt


class OpenAIResponder:
    def __init__(
        self,
        client: Any = None,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 1500,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    def respond(self, agent: Agent, prompt: str, context: ContextBundle) -> str:
        system_prompt = build_system_prompt(agent, context)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            metrics.inc_model_call("respond", "error")
            log.warning(
                "responder_call_failed",
                extra=log_extra(agent_id=agent.id, error=str(exc), error_type=exc.__class__.__name__),
            )
            raise ResponderError(f"Agent reply failed: {exc}", metadata={"agent_id": agent.id}) from exc
        metrics.inc_model_call("respond", "ok")
        content = response.choices[0].message.content if response.choices else None
        return content or EMPTY_REPLY
