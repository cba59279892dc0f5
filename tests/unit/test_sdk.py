"""Tests for the pipeline-authoring SDK."""

import io
import json

import pytest

from gofer_extensions.sdk import (
    DependencyNotFoundError,
    DuplicateTaskError,
    InvalidArgumentError,
    Pipeline,
    RequiredParentStatus,
    Task,
    TaskCycleError,
    pipeline_object,
    pipeline_secret,
    run_object,
)
from gofer_extensions.sdk.dag import Dag, EdgeCreatesCycleError, EntityExistsError, EntityNotFoundError


class TestDag:
    def test_add_nodes_and_edges(self) -> None:
        dag = Dag()
        for node in ("1", "2", "3"):
            dag.add_node(node)
        dag.add_edge("1", "2")
        dag.add_edge("2", "3")
        assert dag.edges("1") == ["2"]
        assert dag.exists("3")
        assert len(dag) == 3

    def test_duplicate_node(self) -> None:
        dag = Dag()
        dag.add_node("1")
        with pytest.raises(EntityExistsError):
            dag.add_node("1")

    def test_edge_to_missing_node(self) -> None:
        dag = Dag()
        dag.add_node("1")
        with pytest.raises(EntityNotFoundError):
            dag.add_edge("1", "2")

    def test_cycle_rejected(self) -> None:
        dag = Dag()
        for node in ("1", "2", "3"):
            dag.add_node(node)
        dag.add_edge("1", "2")
        dag.add_edge("2", "3")
        with pytest.raises(EdgeCreatesCycleError):
            dag.add_edge("3", "1")

    def test_self_edge_is_a_cycle(self) -> None:
        dag = Dag()
        dag.add_node("1")
        with pytest.raises(EdgeCreatesCycleError):
            dag.add_edge("1", "1")

    def test_diamond_is_not_a_cycle(self) -> None:
        dag = Dag()
        for node in ("a", "b", "c", "d"):
            dag.add_node(node)
        dag.add_edge("a", "b")
        dag.add_edge("a", "c")
        dag.add_edge("b", "d")
        dag.add_edge("c", "d")
        assert sorted(dag.edges("a")) == ["b", "c"]


class TestHelpers:
    def test_interpolation_strings(self) -> None:
        assert pipeline_secret("token") == "pipeline_secret{token}"
        assert pipeline_object("artifact") == "pipeline_object{artifact}"
        assert run_object("result") == "run_object{result}"


class TestTask:
    def test_fluent_builder(self) -> None:
        task = (
            Task("build", "golang:1.22")
            .description("compile")
            .variable("GOOS", "linux")
            .variables({"GOARCH": "amd64"})
            .depends_on_one("lint", RequiredParentStatus.SUCCESS)
            .command(["go", "build"])
            .inject_api_token(True)
        )
        data = task.to_dict()
        assert data["description"] == "compile"
        assert data["variables"] == {"GOOS": "linux", "GOARCH": "amd64"}
        assert data["depends_on"] == {"lint": "success"}
        assert data["command"] == ["go", "build"]
        assert data["inject_api_token"] is True
        assert "entrypoint" not in data
        assert "registry_auth" not in data

    def test_registry_auth(self) -> None:
        data = Task("pull", "private/image").registry_auth("me", pipeline_secret("pw")).to_dict()
        assert data["registry_auth"] == {"user": "me", "pass": "pipeline_secret{pw}"}

    def test_global_secret_rejected(self) -> None:
        task = Task("deploy", "alpine").variable("TOKEN", "global_secret{token}")
        with pytest.raises(InvalidArgumentError):
            task.validate()

    @pytest.mark.parametrize("task_id", ["ab", "a" * 33, "has-dash", "has space"])
    def test_invalid_id(self, task_id) -> None:
        with pytest.raises(InvalidArgumentError):
            Task(task_id, "alpine").validate()


class TestPipeline:
    def _pipeline(self, *tasks: Task) -> Pipeline:
        return Pipeline("simple_test", "Simple Test").description("test pipeline").tasks(list(tasks))

    def test_finish_writes_json(self) -> None:
        out = io.StringIO()
        self._pipeline(
            Task("first", "ubuntu:latest"),
            Task("second", "ubuntu:latest").depends_on_one("first", RequiredParentStatus.ANY),
        ).parallelism(2).finish(out)

        data = json.loads(out.getvalue())
        assert data["id"] == "simple_test"
        assert data["name"] == "Simple Test"
        assert data["description"] == "test pipeline"
        assert data["parallelism"] == 2
        assert [t["id"] for t in data["tasks"]] == ["first", "second"]
        assert data["tasks"][1]["depends_on"] == {"first": "any"}

    def test_finish_defaults_to_stdout(self, capsys) -> None:
        self._pipeline(Task("only", "alpine")).finish()
        assert json.loads(capsys.readouterr().out)["id"] == "simple_test"

    def test_duplicate_task(self) -> None:
        with pytest.raises(DuplicateTaskError):
            self._pipeline(Task("same", "alpine"), Task("same", "alpine")).validate()

    def test_missing_dependency(self) -> None:
        with pytest.raises(DependencyNotFoundError) as exc_info:
            self._pipeline(Task("after", "alpine").depends_on_one("ghost", RequiredParentStatus.ANY)).validate()
        assert exc_info.value.dependency == "ghost"

    def test_cycle(self) -> None:
        a = Task("aaa", "alpine").depends_on_one("bbb", RequiredParentStatus.ANY)
        b = Task("bbb", "alpine").depends_on_one("aaa", RequiredParentStatus.ANY)
        with pytest.raises(TaskCycleError):
            self._pipeline(a, b).validate()

    def test_invalid_pipeline_id(self) -> None:
        with pytest.raises(InvalidArgumentError):
            Pipeline("no", "No").validate()

    def test_negative_parallelism(self) -> None:
        with pytest.raises(InvalidArgumentError):
            self._pipeline().parallelism(-1).validate()

    def test_invalid_pipeline_not_written(self) -> None:
        out = io.StringIO()
        with pytest.raises(DuplicateTaskError):
            self._pipeline(Task("same", "alpine"), Task("same", "alpine")).finish(out)
        assert out.getvalue() == ""
