from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Health(BaseModel):
    status: str = "ok"
    db: str = "ok"
    queue: str = "ok"


class AgentQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    project_id: int = Field(alias="projectId")
    target_agent_id: Optional[int] = Field(default=None, alias="targetAgentId")


class AgentQueryAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")
    log_id: int = Field(serialization_alias="logId")
    job: dict[str, Any]


class TaskRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: Optional[int] = Field(default=None, alias="agentId")


class ActionResponse(BaseModel):
    message: str
    job: Optional[dict[str, Any]] = None
