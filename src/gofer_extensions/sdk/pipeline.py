"""Pipeline-authoring builders that emit the JSON document the host registers."""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from typing import IO, Any

from gofer_extensions.sdk.dag import Dag, EdgeCreatesCycleError, EntityExistsError, EntityNotFoundError

_IDENTIFIER = re.compile(r"[A-Za-z0-9_]*")


class PipelineConfigError(Exception):
    """Base for pipeline definitions the host would reject."""


class InvalidArgumentError(PipelineConfigError):
    def __init__(self, argument: str, value: str, description: str) -> None:
        self.argument = argument
        self.value = value
        self.description = description
        super().__init__(f"invalid {argument}: '{value}'; {description}")


class DuplicateTaskError(PipelineConfigError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(
            f"duplicate task names found; {task_id} shares an identifier with a task already logged"
        )


class TaskCycleError(PipelineConfigError):
    def __init__(self, from_id: str, to_id: str) -> None:
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(f"a cycle was detected created a dependency from task {from_id} to task {to_id}")


class DependencyNotFoundError(PipelineConfigError):
    def __init__(self, task_id: str, dependency: str) -> None:
        self.task_id = task_id
        self.dependency = dependency
        super().__init__(f"task {dependency} is listed as a dependency within task {task_id} but does not exist")


class RequiredParentStatus(StrEnum):
    UNKNOWN = "unknown"
    ANY = "any"
    SUCCESS = "success"
    FAILURE = "failure"


def validate_identifier(argument: str, value: str) -> None:
    """Identifiers are 3-32 characters of letters, digits and underscores."""
    if len(value) > 32:
        raise InvalidArgumentError(argument, value, "length cannot be greater than 32")
    if len(value) < 3:
        raise InvalidArgumentError(argument, value, "length cannot be less than 3")
    if not _IDENTIFIER.fullmatch(value):
        raise InvalidArgumentError(
            argument, value, "can only be made up of alphanumeric and underscore characters"
        )


def validate_variables(variables: dict[str, str]) -> None:
    """Task variables may not reference global secrets."""
    for key, value in variables.items():
        if "global_secret{" in value:
            raise InvalidArgumentError(
                key, value, "global secrets cannot be referenced from pipeline configuration"
            )


def pipeline_secret(key: str) -> str:
    return f"pipeline_secret{{{key}}}"


def pipeline_object(key: str) -> str:
    return f"pipeline_object{{{key}}}"


def run_object(key: str) -> str:
    return f"run_object{{{key}}}"


@dataclass
class RegistryAuth:
    user: str
    password: str


@dataclass
class Task:
    """A single container task within a pipeline."""

    id: str
    image: str
    description_text: str | None = None
    registry_auth_value: RegistryAuth | None = None
    depends_on_map: dict[str, RequiredParentStatus] = field(default_factory=dict)
    variables_map: dict[str, str] = field(default_factory=dict)
    entrypoint_value: list[str] | None = None
    command_value: list[str] | None = None
    inject_api_token_value: bool = False

    def description(self, description: str) -> Task:
        self.description_text = description
        return self

    def registry_auth(self, user: str, password: str) -> Task:
        self.registry_auth_value = RegistryAuth(user, password)
        return self

    def depends_on_one(self, task_id: str, status: RequiredParentStatus) -> Task:
        self.depends_on_map[task_id] = status
        return self

    def depends_on_many(self, depends_on: dict[str, RequiredParentStatus]) -> Task:
        self.depends_on_map.update(depends_on)
        return self

    def variable(self, key: str, value: str) -> Task:
        self.variables_map[key] = value
        return self

    def variables(self, variables: dict[str, str]) -> Task:
        self.variables_map.update(variables)
        return self

    def entrypoint(self, entrypoint: list[str]) -> Task:
        self.entrypoint_value = list(entrypoint)
        return self

    def command(self, command: list[str]) -> Task:
        self.command_value = list(command)
        return self

    def inject_api_token(self, inject: bool) -> Task:
        self.inject_api_token_value = inject
        return self

    def validate(self) -> None:
        validate_identifier("id", self.id)
        validate_variables(self.variables_map)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "description": self.description_text or "",
            "image": self.image,
            "depends_on": {k: str(v) for k, v in self.depends_on_map.items()},
            "variables": dict(self.variables_map),
            "inject_api_token": self.inject_api_token_value,
        }
        if self.registry_auth_value is not None:
            data["registry_auth"] = {
                "user": self.registry_auth_value.user,
                "pass": self.registry_auth_value.password,
            }
        if self.entrypoint_value is not None:
            data["entrypoint"] = list(self.entrypoint_value)
        if self.command_value is not None:
            data["command"] = list(self.command_value)
        return data


@dataclass
class Pipeline:
    """A pipeline definition. Call ``finish()`` to validate and emit it."""

    id: str
    name: str
    description_text: str | None = None
    parallelism_value: int = 0
    task_list: list[Task] = field(default_factory=list)

    def description(self, description: str) -> Pipeline:
        self.description_text = description
        return self

    def parallelism(self, parallelism: int) -> Pipeline:
        self.parallelism_value = parallelism
        return self

    def tasks(self, tasks: list[Task]) -> Pipeline:
        self.task_list = list(tasks)
        return self

    def _check_dag(self) -> None:
        dag = Dag()
        for task in self.task_list:
            try:
                dag.add_node(task.id)
            except EntityExistsError:
                raise DuplicateTaskError(task.id) from None

        for task in self.task_list:
            for dependency in task.depends_on_map:
                try:
                    dag.add_edge(dependency, task.id)
                except EntityNotFoundError:
                    raise DependencyNotFoundError(task.id, dependency) from None
                except EdgeCreatesCycleError as e:
                    raise TaskCycleError(e.from_id, e.to_id) from None

    def validate(self) -> None:
        validate_identifier("id", self.id)
        if self.parallelism_value < 0:
            raise InvalidArgumentError("parallelism", str(self.parallelism_value), "cannot be negative")
        self._check_dag()
        for task in self.task_list:
            task.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description_text or "",
            "parallelism": self.parallelism_value,
            "tasks": [task.to_dict() for task in self.task_list],
        }

    def finish(self, out: IO[str] | None = None) -> None:
        """Validate, then write the JSON document to stdout (or ``out``)."""
        self.validate()
        stream = out or sys.stdout
        stream.write(json.dumps(self.to_dict()))
        stream.flush()
